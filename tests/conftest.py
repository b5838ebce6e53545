"""
Pytest configuration and fixtures for Theseus tests.
"""
import os
import sys
from contextlib import contextmanager

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from theseus.app import create_app
from theseus.deployment import DeploymentOrchestrator
from theseus.models import Container, HostMachine, PortBinding
from theseus.repository import Repositories
from theseus.runtime import RuntimeCallError
from theseus.store import EntityStore


class FakeSession:
    """In-memory stand-in for a Docker client session."""

    def __init__(self, runtime: "FakeRuntime"):
        self.runtime = runtime

    def _maybe_fail(self, operation: str, message: str):
        if self.runtime.fail_on == operation:
            raise RuntimeCallError(operation, message)

    def pull_image(self, image_name: str):
        self.runtime.calls.append(('pull', image_name))
        self._maybe_fail('pull', f"pull access denied for {image_name}, repository does not exist")
        self.runtime.images.add(image_name)

    def create_container(self, image_name: str, container_name: str, **options) -> str:
        self.runtime.calls.append(('create', image_name, container_name, options))
        self._maybe_fail('create', f'Conflict. The container name "/{container_name}" is already in use')
        runtime_id = f"{len(self.runtime.created) + 1:064x}"
        self.runtime.created[runtime_id] = container_name
        return runtime_id

    def start_container(self, runtime_id: str):
        self.runtime.calls.append(('start', runtime_id))
        self._maybe_fail('start', "driver failed programming external connectivity")
        self.runtime.running[runtime_id] = self.runtime.created[runtime_id]

    def list_running(self):
        self.runtime.calls.append(('list',))
        return list(self.runtime.running.items())


class FakeRuntime:
    """
    Runtime double. Set `fail_on` to 'connect', 'pull', 'create' or 'start'
    to make that step fail.
    """

    def __init__(self, fail_on: str = None):
        self.fail_on = fail_on
        self.calls = []
        self.images = set()
        self.created = {}
        self.running = {}
        self.sessions_opened = 0
        self.sessions_closed = 0

    @contextmanager
    def session(self):
        if self.fail_on == 'connect':
            raise RuntimeCallError('connect', 'Cannot connect to the Docker daemon')
        self.sessions_opened += 1
        try:
            yield FakeSession(self)
        finally:
            self.sessions_closed += 1

    def operations(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / 'internal.db')


@pytest.fixture
def store(db_path):
    """An open store in a fresh temporary file."""
    store = EntityStore.open(db_path, lock_timeout=0.1)
    yield store
    store.close()


@pytest.fixture
def repos(store):
    return Repositories.for_store(store)


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def orchestrator(fake_runtime, repos):
    return DeploymentOrchestrator(fake_runtime, repos.containers)


@pytest.fixture
def app(store, fake_runtime, tmp_path):
    """Create application for testing."""
    app = create_app('testing', store=store, runtime=fake_runtime)
    app.config['COMPOSE_OUTPUT_PATH'] = str(tmp_path / 'docker-compose.yml')
    return app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def sample_host():
    return HostMachine(id='node-01', ip='192.168.1.50', status='online')


@pytest.fixture
def sample_container(sample_host):
    """A fully populated webtop container description."""
    return Container(
        id='550e8400-e29b-41d4-a716-446655440000',
        name='lscr.io/linuxserver/webtop:latest',
        container='webtop_guillaume_dev',
        hostmachine=sample_host,
        restartpolicy='unless-stopped',
        ports=[PortBinding(3000, 3000), PortBinding(3001, 3001)],
        environmentvariables={
            'PUID': '1000',
            'PGID': '1000',
            'TZ': 'America/Toronto',
            'TITLE': 'Guillaume-Webtop',
        },
        volumemounts={
            '/home/guillaume/webtop/config': '/config',
            '/var/run/docker.sock': '/var/run/docker.sock',
        },
        shmsize='1gb',
        status='',
    )
