import atexit
import logging
import os
import secrets

import redis
from flask import Flask, request, jsonify
from werkzeug.security import generate_password_hash

from shared.pubsub import PubSubClient

from .compose import write_compose_file
from .config import config
from .deployment import DeploymentOrchestrator
from .errors import (
    ContainerCreateFailed,
    ContainerStartFailed,
    CorruptRecord,
    DeploymentError,
    ImagePullFailed,
    NotFound,
    ReconciliationFailed,
    RuntimeUnavailable,
    StoreError,
)
from .models import Container, HostMachine, Organization, Team, User
from .repository import Repositories
from .runtime import DockerRuntime
from .store import HOST_MACHINES, EntityStore

logger = logging.getLogger(__name__)

DEPLOYMENT_ERROR_STATUS = {
    RuntimeUnavailable: 503,
    ImagePullFailed: 400,
    ContainerCreateFailed: 409,
    ContainerStartFailed: 500,
    ReconciliationFailed: 500,
}


def create_app(
    config_name: str = None,
    store: EntityStore = None,
    runtime: DockerRuntime = None,
    publisher: PubSubClient = None
) -> Flask:
    """
    Application factory for the Theseus API.

    When no store is passed in, one is opened from DATABASE_PATH and closed
    at interpreter exit. Callers that manage the store themselves (run.py,
    tests) pass it in and close it.
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config['default']))

    if store is None:
        store = EntityStore.open(
            app.config['DATABASE_PATH'],
            lock_timeout=app.config['STORE_LOCK_TIMEOUT'],
            busy_timeout=app.config['STORE_BUSY_TIMEOUT']
        )
        atexit.register(store.close)

    if runtime is None:
        runtime = DockerRuntime(
            base_url=app.config['DOCKER_BASE_URL'] or None,
            timeout=app.config['DOCKER_TIMEOUT']
        )

    if publisher is None and app.config['REDIS_URL']:
        publisher = PubSubClient(app.config['REDIS_URL'])

    # Store services on app for access in routes
    app.store = store
    app.repositories = Repositories.for_store(store)
    app.orchestrator = DeploymentOrchestrator(runtime, app.repositories.containers, publisher)
    app.publisher = publisher

    register_error_handlers(app)
    register_api_routes(app)

    return app


def register_error_handlers(app: Flask):
    """Map core exceptions to JSON error responses."""

    @app.errorhandler(NotFound)
    def handle_not_found(e: NotFound):
        return jsonify({'error': e.reason, 'kind': e.kind, 'key': e.key}), 404

    @app.errorhandler(CorruptRecord)
    def handle_corrupt_record(e: CorruptRecord):
        return jsonify({'error': e.reason, 'kind': e.kind, 'key': e.key}), 500

    @app.errorhandler(StoreError)
    def handle_store_error(e: StoreError):
        logger.error(f"Store error: {e}")
        return jsonify({'error': str(e)}), 500

    @app.errorhandler(DeploymentError)
    def handle_deployment_error(e: DeploymentError):
        return jsonify(e.to_dict()), DEPLOYMENT_ERROR_STATUS.get(type(e), 500)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _snapshot(data: dict, field: str, repository):
    """Replace a reference given by key with a snapshot of the stored entity."""
    if isinstance(data.get(field), str):
        data[field] = repository.get(data[field]).to_dict()


def _parse(entity_cls, data: dict):
    try:
        return entity_cls.from_dict(data, partial=True), None
    except ValueError as e:
        return None, str(e)


def register_api_routes(app: Flask):
    """Register API routes."""
    repos = app.repositories

    @app.route('/status')
    def status():
        """Liveness check."""
        return jsonify({'message': 'Theseus service is up!'})

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        try:
            app.store.read(HOST_MACHINES, b'health-check')
            db_ok = True
        except StoreError:
            db_ok = False

        return jsonify({
            'status': 'healthy' if db_ok else 'unhealthy',
            'database': 'connected' if db_ok else 'disconnected'
        }), 200 if db_ok else 503

    # ==================== Containers ====================

    @app.route('/api/containers/running', methods=['GET'])
    def api_list_containers():
        """Every recorded container, whatever its status."""
        return jsonify([c.to_dict() for c in repos.containers.list_all()])

    @app.route('/api/containers/unrecorded', methods=['GET'])
    def api_unrecorded_containers():
        """Containers running on the runtime without a record."""
        unrecorded = app.orchestrator.find_unrecorded()
        return jsonify({'containers': unrecorded, 'count': len(unrecorded)})

    @app.route('/api/containers/<container_id>', methods=['GET'])
    def api_get_container(container_id: str):
        return jsonify(repos.containers.get(container_id).to_dict())

    @app.route('/api/containers', methods=['POST'])
    def api_deploy_container():
        """Launch a container on the runtime and record it."""
        data = _json_body()
        if data is None:
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        if not data.get('id'):
            data['id'] = secrets.token_hex(4)
        _snapshot(data, 'hostmachine', repos.host_machines)

        container, error = _parse(Container, data)
        if error:
            return jsonify({'error': error}), 400
        if not container.name or not container.container:
            return jsonify({'error': 'Image name and container name are required'}), 400

        recorded = app.orchestrator.deploy(container)
        return jsonify(recorded.to_dict()), 201

    @app.route('/api/containers/<container_id>/events', methods=['GET'])
    def api_container_events(container_id: str):
        """Recent lifecycle events for a container."""
        if app.publisher is None:
            return jsonify({'error': 'Event publishing is not configured'}), 503

        count = request.args.get('count', 50, type=int)
        if count < 1:
            return jsonify({'error': 'count must be at least 1'}), 400

        try:
            events = app.publisher.get_recent_events(container_id, count)
        except redis.RedisError as e:
            return jsonify({'error': f'Event log unavailable: {e}'}), 503

        return jsonify({
            'container_id': container_id,
            'events': [e.to_dict() for e in events]
        })

    @app.route('/api/webtop/create', methods=['POST'])
    def api_create_webtop():
        """Write a compose file for a webtop container."""
        data = _json_body()
        if data is None:
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        if not data.get('id'):
            data['id'] = secrets.token_hex(4)

        container, error = _parse(Container, data)
        if error:
            return jsonify({'error': error}), 400

        try:
            path = write_compose_file(container, app.config['COMPOSE_OUTPUT_PATH'])
        except OSError as e:
            logger.error(f"Could not write compose file: {e}")
            return jsonify({'error': f'Could not write compose file: {e}'}), 500

        return jsonify({
            'message': 'webtop created successfully',
            'id': container.id,
            'path': str(path)
        }), 201

    # ==================== Host machines ====================

    @app.route('/api/hostmachine/running', methods=['GET'])
    def api_list_host_machines():
        return jsonify([h.to_dict() for h in repos.host_machines.list_all()])

    @app.route('/api/hostmachines', methods=['POST'])
    def api_save_host_machine():
        data = _json_body()
        if data is None:
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        host, error = _parse(HostMachine, data)
        if error:
            return jsonify({'error': error}), 400
        if not host.key:
            return jsonify({'error': 'Host machine id is required'}), 400

        repos.host_machines.save(host)
        return jsonify(host.to_dict()), 201

    @app.route('/api/hostmachines/<host_id>', methods=['GET'])
    def api_get_host_machine(host_id: str):
        return jsonify(repos.host_machines.get(host_id).to_dict())

    # ==================== Organizations ====================

    @app.route('/api/organizations', methods=['GET'])
    def api_list_organizations():
        return jsonify([o.to_dict() for o in repos.organizations.list_all()])

    @app.route('/api/organizations', methods=['POST'])
    def api_save_organization():
        data = _json_body()
        if data is None:
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        organization, error = _parse(Organization, data)
        if error:
            return jsonify({'error': error}), 400
        if not organization.key:
            return jsonify({'error': 'Organization name is required'}), 400

        repos.organizations.save(organization)
        return jsonify(organization.to_dict()), 201

    @app.route('/api/organizations/<name>', methods=['GET'])
    def api_get_organization(name: str):
        return jsonify(repos.organizations.get(name).to_dict())

    # ==================== Teams ====================

    @app.route('/api/teams', methods=['GET'])
    def api_list_teams():
        return jsonify([t.to_dict() for t in repos.teams.list_all()])

    @app.route('/api/teams', methods=['POST'])
    def api_save_team():
        """Save a team; `organization` may be an organization name to snapshot."""
        data = _json_body()
        if data is None:
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        _snapshot(data, 'organization', repos.organizations)
        team, error = _parse(Team, data)
        if error:
            return jsonify({'error': error}), 400
        if not team.key:
            return jsonify({'error': 'Team name is required'}), 400

        repos.teams.save(team)
        return jsonify(team.to_dict()), 201

    @app.route('/api/teams/<name>', methods=['GET'])
    def api_get_team(name: str):
        return jsonify(repos.teams.get(name).to_dict())

    # ==================== Users ====================

    @app.route('/api/users', methods=['GET'])
    def api_list_users():
        return jsonify([u.to_dict(include_password_hash=False) for u in repos.users.list_all()])

    @app.route('/api/users', methods=['POST'])
    def api_save_user():
        """Save a user; a plain `password` is hashed, a client-sent hash is ignored."""
        data = _json_body()
        if data is None:
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        password = data.pop('password', None)
        data.pop('password_hash', None)
        if password is not None and not isinstance(password, str):
            return jsonify({'error': "field 'password' must be of type str"}), 400

        _snapshot(data, 'team', repos.teams)
        user, error = _parse(User, data)
        if error:
            return jsonify({'error': error}), 400
        if not user.key:
            return jsonify({'error': 'Username is required'}), 400

        if password:
            user.password_hash = generate_password_hash(password)

        repos.users.save(user)
        return jsonify(user.to_dict(include_password_hash=False)), 201

    @app.route('/api/users/<username>', methods=['GET'])
    def api_get_user(username: str):
        return jsonify(repos.users.get(username).to_dict(include_password_hash=False))
