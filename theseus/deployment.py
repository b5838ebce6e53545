import dataclasses
import logging
from typing import List, Optional

import redis

from shared.events import Event, container_deployed_event, deploy_failed_event
from shared.pubsub import PubSubClient
from shared.state_machine import DeploymentStateMachine

from .errors import (
    ContainerCreateFailed,
    ContainerStartFailed,
    DeploymentError,
    ImagePullFailed,
    ReconciliationFailed,
    RuntimeUnavailable,
    StoreError,
)
from .models import Container, ContainerStatus
from .repository import EntityRepository
from .runtime import DockerRuntime, RuntimeCallError, create_options

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """
    Launches containers on the runtime and records them once they run.

    A deploy goes pull -> create -> start -> record, in that order, and
    stops at the first failure. The store is written last, so a
    record always means the container was started; a container running
    without a record is reported by find_unrecorded.

    Nothing is retried and nothing is cleaned up here. Each failure kind
    carries the last state reached so the caller can decide.
    """

    def __init__(
        self,
        runtime: DockerRuntime,
        containers: EntityRepository[Container],
        publisher: Optional[PubSubClient] = None
    ):
        self.runtime = runtime
        self.containers = containers
        self.publisher = publisher

    def deploy(self, container: Container) -> Container:
        """
        Pull, create and start `container`, then save it with status running.

        Returns the saved record. The argument itself is not modified.

        Raises:
            RuntimeUnavailable: the runtime could not be reached.
            ImagePullFailed: the image could not be pulled.
            ContainerCreateFailed: the runtime refused to create the container.
            ContainerStartFailed: the container was created but did not start.
            ReconciliationFailed: the container runs but could not be recorded.
        """
        sm = DeploymentStateMachine()
        logger.info(f"Deploying container '{container.id}' ({container.container}) from image {container.name}")

        try:
            runtime_id = self._launch(container, sm)
            recorded = dataclasses.replace(container, status=ContainerStatus.RUNNING)

            try:
                self.containers.save(recorded)
            except StoreError as e:
                logger.error(
                    f"Container '{container.id}' is running as {runtime_id[:12]} but could not be recorded: {e}"
                )
                raise ReconciliationFailed(
                    recorded,
                    sm.state.value,
                    f"Container is running but its record could not be saved: {e}",
                    runtime_id=runtime_id
                ) from e
            sm.transition('record')

        except DeploymentError as e:
            self._notify(container.id, deploy_failed_event(container.id, e.kind, e.state, e.reason))
            raise

        logger.info(f"Container '{container.id}' recorded as {recorded.status} (runtime id {runtime_id[:12]})")
        self._notify(container.id, container_deployed_event(container.id, container.container, runtime_id))
        return recorded

    def _launch(self, container: Container, sm: DeploymentStateMachine) -> str:
        try:
            with self.runtime.session() as session:
                return self._run_steps(session, container, sm)
        except RuntimeCallError as e:
            # Step failures are converted below, so only the connection itself lands here
            logger.error(f"Could not reach the container runtime: {e}")
            raise RuntimeUnavailable(container.id, sm.state.value, str(e)) from e

    def _run_steps(self, session, container: Container, sm: DeploymentStateMachine) -> str:
        try:
            session.pull_image(container.name)
        except RuntimeCallError as e:
            logger.error(f"Error pulling image {container.name}: {e}")
            raise ImagePullFailed(container.id, sm.state.value, str(e)) from e
        sm.transition('pull')

        try:
            runtime_id = session.create_container(
                container.name,
                container.container,
                **create_options(container)
            )
        except RuntimeCallError as e:
            logger.error(f"Error creating container {container.container}: {e}")
            raise ContainerCreateFailed(container.id, sm.state.value, str(e)) from e
        sm.transition('create')

        try:
            session.start_container(runtime_id)
        except RuntimeCallError as e:
            logger.error(
                f"Error starting container {container.container} ({runtime_id[:12]}), "
                f"left on the runtime as a {sm.runtime_footprint}: {e}"
            )
            raise ContainerStartFailed(container.id, sm.state.value, str(e), runtime_id=runtime_id) from e
        sm.transition('start')

        logger.info(f"Started container {container.container} ({runtime_id[:12]})")
        return runtime_id

    def find_unrecorded(self) -> List[dict]:
        """
        Containers running on the runtime with no record of the same name.

        This is the state a ReconciliationFailed leaves behind.
        """
        recorded_names = {c.container for c in self.containers.list_all()}

        try:
            with self.runtime.session() as session:
                running = session.list_running()
        except RuntimeCallError as e:
            raise RuntimeUnavailable("", "not_started", str(e)) from e

        return [
            {'runtime_id': runtime_id, 'container': name}
            for runtime_id, name in running
            if name not in recorded_names
        ]

    def _notify(self, container_id: str, event: Event):
        if self.publisher is None:
            return
        try:
            self.publisher.publish_container_event(container_id, event)
        except redis.RedisError as e:
            logger.warning(f"Could not publish {event.type.value} for container '{container_id}': {e}")
