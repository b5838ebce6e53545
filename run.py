#!/usr/bin/env python3
"""
Entry point for the Theseus API.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 8080)
    THESEUS_DB_PATH: Store file (default: internal.db)
"""
import logging
import os

from theseus.app import create_app
from theseus.config import config
from theseus.store import EntityStore


def run():
    """Open the store for the lifetime of the server and serve the API."""
    config_name = os.getenv('FLASK_ENV', 'development')
    settings = config.get(config_name, config['default'])

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    port = int(os.getenv('PORT', 8080))
    debug = config_name == 'development'

    with EntityStore.open(
        settings.DATABASE_PATH,
        lock_timeout=settings.STORE_LOCK_TIMEOUT,
        busy_timeout=settings.STORE_BUSY_TIMEOUT
    ) as store:
        app = create_app(config_name, store=store)
        print(f"Starting Theseus on port {port}...")
        # The reloader would fork a second process that cannot take the store lock
        app.run(host='0.0.0.0', port=port, debug=debug, use_reloader=False)


if __name__ == '__main__':
    run()
