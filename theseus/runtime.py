"""
Container runtime boundary.

The orchestrator needs four things from the runtime: pull an image,
create a container, start it, and list what is running. Everything else
(API version negotiation, transport, auth to registries) is left to the
Docker SDK.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

import docker
import docker.errors

from .models import Container

logger = logging.getLogger(__name__)


class RuntimeCallError(Exception):
    """A single runtime call failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


def create_options(container: Container) -> dict:
    """Translate a container description into Docker SDK create() keyword arguments."""
    options = {}

    if container.ports:
        options['ports'] = {f"{p.internal}/tcp": p.external for p in container.ports}
    if container.environmentvariables:
        options['environment'] = dict(container.environmentvariables)
    if container.volumemounts:
        options['volumes'] = {
            host_path: {'bind': mount_path, 'mode': 'rw'}
            for host_path, mount_path in container.volumemounts.items()
        }
    if container.restartpolicy:
        options['restart_policy'] = {'Name': container.restartpolicy}
    if container.shmsize:
        options['shm_size'] = container.shmsize

    return options


class RuntimeSession:
    """An open connection to the Docker daemon. Obtain one from DockerRuntime.session()."""

    def __init__(self, client: docker.DockerClient):
        self.client = client

    def pull_image(self, image_name: str):
        try:
            self.client.images.pull(image_name)
        except docker.errors.DockerException as e:
            raise RuntimeCallError('pull', str(e)) from e

    def create_container(self, image_name: str, container_name: str, **options) -> str:
        """Create (but do not start) a container and return its runtime id."""
        try:
            created = self.client.containers.create(image_name, name=container_name, **options)
        except docker.errors.DockerException as e:
            raise RuntimeCallError('create', str(e)) from e
        return created.id

    def start_container(self, runtime_id: str):
        try:
            self.client.api.start(runtime_id)
        except docker.errors.DockerException as e:
            raise RuntimeCallError('start', str(e)) from e

    def list_running(self) -> List[Tuple[str, str]]:
        """`(runtime_id, container_name)` for every running container."""
        try:
            running = self.client.containers.list()
        except docker.errors.DockerException as e:
            raise RuntimeCallError('list', str(e)) from e
        return [(c.id, c.name) for c in running]


class DockerRuntime:
    def __init__(self, base_url: Optional[str] = None, timeout: int = 60):
        self.base_url = base_url
        self.timeout = timeout

    def _connect(self) -> docker.DockerClient:
        if self.base_url:
            return docker.DockerClient(base_url=self.base_url, timeout=self.timeout)
        return docker.from_env(timeout=self.timeout)

    @contextmanager
    def session(self) -> Iterator[RuntimeSession]:
        """Open a client for the duration of the block; it is closed on every exit path."""
        try:
            client = self._connect()
        except docker.errors.DockerException as e:
            raise RuntimeCallError('connect', str(e)) from e

        try:
            yield RuntimeSession(client)
        finally:
            client.close()
            logger.debug("Closed Docker client session")
