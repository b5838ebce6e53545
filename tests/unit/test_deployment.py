"""
Unit tests for DeploymentOrchestrator.
Tests: deploy success, each failure stage, event publishing, find_unrecorded
"""
import pytest
import redis

from shared.events import EventType
from theseus.deployment import DeploymentOrchestrator
from theseus.errors import (
    ContainerCreateFailed,
    ContainerStartFailed,
    ImagePullFailed,
    ReconciliationFailed,
    RuntimeUnavailable,
    TransactionFailed,
)
from theseus.models import Container


class TestDeploySuccess:
    """Tests for a deploy where every step works."""

    def test_records_running_container(self, orchestrator, repos, sample_container):
        """The saved record should have status running."""
        recorded = orchestrator.deploy(sample_container)

        assert recorded.status == 'running'
        assert repos.containers.get(sample_container.id) == recorded

    def test_argument_not_modified(self, orchestrator, sample_container):
        orchestrator.deploy(sample_container)

        assert sample_container.status == ''

    def test_step_order(self, orchestrator, fake_runtime, sample_container):
        """Runtime calls happen as pull, create, start."""
        orchestrator.deploy(sample_container)

        assert fake_runtime.operations() == ['pull', 'create', 'start']
        assert fake_runtime.calls[0] == ('pull', 'lscr.io/linuxserver/webtop:latest')

    def test_create_uses_image_and_name(self, orchestrator, fake_runtime, sample_container):
        orchestrator.deploy(sample_container)

        _, image, name, options = fake_runtime.calls[1]
        assert image == 'lscr.io/linuxserver/webtop:latest'
        assert name == 'webtop_guillaume_dev'
        assert options['ports'] == {'3000/tcp': 3000, '3001/tcp': 3001}
        assert options['restart_policy'] == {'Name': 'unless-stopped'}

    def test_session_released(self, orchestrator, fake_runtime, sample_container):
        orchestrator.deploy(sample_container)

        assert fake_runtime.sessions_opened == 1
        assert fake_runtime.sessions_closed == 1

    def test_redeploy_overwrites_record(self, orchestrator, repos, sample_container):
        """Deploying the same id twice leaves one record."""
        orchestrator.deploy(sample_container)
        orchestrator.deploy(sample_container)

        assert len(repos.containers.list_all()) == 1


class TestDeployFailures:
    """Each step fails with its own error kind and nothing is recorded."""

    def test_pull_failure(self, orchestrator, fake_runtime, repos, sample_container):
        """An image that cannot be pulled leaves the store unchanged."""
        existing = Container(id='other', name='nginx:latest', container='web', status='running')
        repos.containers.save(existing)
        fake_runtime.fail_on = 'pull'

        with pytest.raises(ImagePullFailed) as exc_info:
            orchestrator.deploy(sample_container)

        assert exc_info.value.state == 'not_started'
        assert repos.containers.list_all() == [existing]
        assert fake_runtime.operations() == ['pull']

    def test_create_failure(self, orchestrator, fake_runtime, repos, sample_container):
        fake_runtime.fail_on = 'create'

        with pytest.raises(ContainerCreateFailed) as exc_info:
            orchestrator.deploy(sample_container)

        assert exc_info.value.state == 'image_pulled'
        assert exc_info.value.runtime_id is None
        assert repos.containers.list_all() == []
        assert 'start' not in fake_runtime.operations()

    def test_start_failure(self, orchestrator, fake_runtime, repos, sample_container):
        """A container that does not start is never recorded and is left in place."""
        fake_runtime.fail_on = 'start'

        with pytest.raises(ContainerStartFailed) as exc_info:
            orchestrator.deploy(sample_container)

        error = exc_info.value
        assert error.state == 'container_created'
        assert error.runtime_id in fake_runtime.created
        assert repos.containers.list_all() == []
        assert fake_runtime.sessions_closed == 1

    def test_runtime_unreachable(self, orchestrator, fake_runtime, repos, sample_container):
        fake_runtime.fail_on = 'connect'

        with pytest.raises(RuntimeUnavailable) as exc_info:
            orchestrator.deploy(sample_container)

        assert exc_info.value.state == 'not_started'
        assert repos.containers.list_all() == []

    def test_error_kinds_are_distinct(self):
        kinds = {cls.kind for cls in [
            RuntimeUnavailable, ImagePullFailed, ContainerCreateFailed,
            ContainerStartFailed, ReconciliationFailed,
        ]}
        assert len(kinds) == 5


class TestReconciliationFailure:
    """The container runs but its record cannot be saved."""

    def test_store_closed(self, orchestrator, fake_runtime, store, sample_container):
        store.close()

        with pytest.raises(ReconciliationFailed) as exc_info:
            orchestrator.deploy(sample_container)

        error = exc_info.value
        assert error.state == 'container_running'
        assert error.runtime_id in fake_runtime.running
        assert error.container.status == 'running'

    def test_resave_recovers(self, orchestrator, fake_runtime, repos, sample_container, mocker):
        """Saving the carried record later completes the bookkeeping."""
        mocker.patch.object(
            repos.containers, 'save',
            side_effect=TransactionFailed("database or disk is full")
        )

        with pytest.raises(ReconciliationFailed) as exc_info:
            orchestrator.deploy(sample_container)

        assert orchestrator.find_unrecorded() == [{
            'runtime_id': exc_info.value.runtime_id,
            'container': 'webtop_guillaume_dev',
        }]

        mocker.stopall()
        repos.containers.save(exc_info.value.container)

        assert repos.containers.get(sample_container.id).status == 'running'
        assert orchestrator.find_unrecorded() == []
        assert fake_runtime.operations().count('start') == 1


class TestFindUnrecorded:
    """Tests for find_unrecorded."""

    def test_nothing_running(self, orchestrator):
        assert orchestrator.find_unrecorded() == []

    def test_recorded_containers_excluded(self, orchestrator, sample_container):
        orchestrator.deploy(sample_container)

        assert orchestrator.find_unrecorded() == []

    def test_foreign_container_listed(self, orchestrator, fake_runtime):
        """Containers started outside Theseus show up."""
        fake_runtime.running['f' * 64] = 'hand-started'

        assert orchestrator.find_unrecorded() == [
            {'runtime_id': 'f' * 64, 'container': 'hand-started'}
        ]

    def test_runtime_unreachable(self, orchestrator, fake_runtime):
        fake_runtime.fail_on = 'connect'

        with pytest.raises(RuntimeUnavailable):
            orchestrator.find_unrecorded()


class TestEvents:
    """Lifecycle events go to the publisher when one is configured."""

    @pytest.fixture
    def publisher(self, mocker):
        return mocker.MagicMock()

    @pytest.fixture
    def publishing_orchestrator(self, fake_runtime, repos, publisher):
        return DeploymentOrchestrator(fake_runtime, repos.containers, publisher)

    def test_deployed_event(self, publishing_orchestrator, publisher, sample_container):
        publishing_orchestrator.deploy(sample_container)

        container_id, event = publisher.publish_container_event.call_args[0]
        assert container_id == sample_container.id
        assert event.type == EventType.CONTAINER_DEPLOYED
        assert event.data['container'] == 'webtop_guillaume_dev'

    def test_failed_event(self, publishing_orchestrator, publisher, fake_runtime, sample_container):
        fake_runtime.fail_on = 'start'

        with pytest.raises(ContainerStartFailed):
            publishing_orchestrator.deploy(sample_container)

        _, event = publisher.publish_container_event.call_args[0]
        assert event.type == EventType.CONTAINER_DEPLOY_FAILED
        assert event.data['kind'] == 'container_start_failed'
        assert event.data['state'] == 'container_created'

    def test_redis_down_does_not_fail_deploy(
        self, publishing_orchestrator, publisher, repos, sample_container
    ):
        """A broken event channel never changes the deploy outcome."""
        publisher.publish_container_event.side_effect = redis.ConnectionError("Connection refused")

        recorded = publishing_orchestrator.deploy(sample_container)

        assert repos.containers.get(sample_container.id) == recorded
