from typing import Optional


class TheseusError(Exception):
    """Base class for every failure raised by the core."""


# ==================== Storage ====================

class StoreError(TheseusError):
    pass


class StoreUnavailable(StoreError):
    """The store file could not be opened, locked, or is already closed."""


class TransactionFailed(StoreError):
    """A read or write transaction could not complete."""


# ==================== Repository ====================

class RepositoryError(TheseusError):
    def __init__(self, kind: str, key: str, reason: str):
        self.kind = kind
        self.key = key
        self.reason = reason
        super().__init__(reason)


class NotFound(RepositoryError):
    def __init__(self, kind: str, key: str):
        super().__init__(kind, key, f"{kind} '{key}' was not found")


class CorruptRecord(RepositoryError):
    def __init__(self, kind: str, key: str, detail: str = None):
        reason = f"{kind} '{key}' could not be decoded"
        if detail:
            reason = f"{reason}: {detail}"
        super().__init__(kind, key, reason)


# ==================== Deployment ====================

class DeploymentError(TheseusError):
    """
    A deploy call stopped before the container was recorded.

    `state` is the last deployment state that was reached successfully, so
    callers can pick a recovery action without re-inspecting the runtime.
    """

    kind = "deployment_failed"

    def __init__(
        self,
        container_id: str,
        state: str,
        reason: str,
        runtime_id: Optional[str] = None
    ):
        self.container_id = container_id
        self.state = state
        self.reason = reason
        self.runtime_id = runtime_id
        super().__init__(reason)

    def to_dict(self) -> dict:
        return {
            'error': self.reason,
            'kind': self.kind,
            'container_id': self.container_id,
            'state': self.state,
            'runtime_id': self.runtime_id,
        }


class RuntimeUnavailable(DeploymentError):
    kind = "runtime_unavailable"


class ImagePullFailed(DeploymentError):
    kind = "image_pull_failed"


class ContainerCreateFailed(DeploymentError):
    kind = "container_create_failed"


class ContainerStartFailed(DeploymentError):
    """The runtime container exists but is not running and is not recorded."""

    kind = "container_start_failed"


class ReconciliationFailed(DeploymentError):
    """
    The runtime container is running but its record could not be saved.

    `container` holds the record that should have been saved; re-saving it
    is the only safe recovery. Starting the container again is not.
    """

    kind = "reconciliation_failed"

    def __init__(self, container, state: str, reason: str, runtime_id: Optional[str] = None):
        self.container = container
        super().__init__(container.id, state, reason, runtime_id=runtime_id)
