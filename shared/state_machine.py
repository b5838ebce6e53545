from enum import Enum
from dataclasses import dataclass


class DeploymentState(str, Enum):
    NOT_STARTED = "not_started"
    IMAGE_PULLED = "image_pulled"
    CONTAINER_CREATED = "container_created"
    CONTAINER_RUNNING = "container_running"
    RECORDED = "recorded"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: DeploymentState
    to_state: DeploymentState
    action: str


class DeploymentStateMachine:
    """Tracks how far a single deploy call got. Transitions only move forward."""

    TRANSITIONS = [
        Transition(DeploymentState.NOT_STARTED, DeploymentState.IMAGE_PULLED, "pull"),
        Transition(DeploymentState.IMAGE_PULLED, DeploymentState.CONTAINER_CREATED, "create"),
        Transition(DeploymentState.CONTAINER_CREATED, DeploymentState.CONTAINER_RUNNING, "start"),
        Transition(DeploymentState.CONTAINER_RUNNING, DeploymentState.RECORDED, "record"),
    ]

    # What the runtime holds when a deploy stops in a given state
    RUNTIME_FOOTPRINT = {
        DeploymentState.NOT_STARTED: "nothing",
        DeploymentState.IMAGE_PULLED: "image only",
        DeploymentState.CONTAINER_CREATED: "stopped container",
        DeploymentState.CONTAINER_RUNNING: "running container",
        DeploymentState.RECORDED: "running container",
    }

    def __init__(self):
        self._state = DeploymentState.NOT_STARTED

    @property
    def state(self) -> DeploymentState:
        return self._state

    @property
    def runtime_footprint(self) -> str:
        return self.RUNTIME_FOOTPRINT[self._state]

    def transition(self, action: str) -> DeploymentState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )
