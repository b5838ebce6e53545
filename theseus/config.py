import os


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')

    # Entity store
    DATABASE_PATH = os.getenv('THESEUS_DB_PATH', 'internal.db')
    STORE_LOCK_TIMEOUT = float(os.getenv('STORE_LOCK_TIMEOUT', '1.0'))
    STORE_BUSY_TIMEOUT = float(os.getenv('STORE_BUSY_TIMEOUT', '5.0'))

    # Redis (lifecycle events); empty disables publishing
    REDIS_URL = os.getenv('REDIS_URL', '')

    # Docker; an empty base URL means DOCKER_HOST / the local socket
    DOCKER_BASE_URL = os.getenv('DOCKER_BASE_URL', '')
    DOCKER_TIMEOUT = int(os.getenv('DOCKER_TIMEOUT', '60'))

    # Compose files for webtop containers
    COMPOSE_OUTPUT_PATH = os.getenv('COMPOSE_OUTPUT_PATH', 'docker-compose.yml')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    DEBUG = False
    TESTING = True
    REDIS_URL = ''
    STORE_LOCK_TIMEOUT = 0.1


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
