from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
import json


class EventType(str, Enum):
    CONTAINER_DEPLOYED = "container.deployed"
    CONTAINER_DEPLOY_FAILED = "container.deploy_failed"


@dataclass
class Event:
    type: EventType
    container_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "container_id": self.container_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            container_id=data["container_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def container_deployed_event(container_id: str, container_name: str, runtime_id: str) -> Event:
    return Event(
        type=EventType.CONTAINER_DEPLOYED,
        container_id=container_id,
        data={
            "container": container_name,
            "runtime_id": runtime_id
        }
    )


def deploy_failed_event(container_id: str, kind: str, state: str, reason: str) -> Event:
    return Event(
        type=EventType.CONTAINER_DEPLOY_FAILED,
        container_id=container_id,
        data={
            "kind": kind,
            "state": state,
            "reason": reason
        }
    )
