import logging
import os
from typing import List

import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"
EVENT_LOG_LENGTH = 1000


def container_channel(container_id: str) -> str:
    return f"container:{container_id}:events"


def container_event_log(container_id: str) -> str:
    return f"container:{container_id}:event_log"


class PubSubClient:
    """Publishes container lifecycle events and keeps a short per-container history."""

    def __init__(self, redis_url: str = None, redis_client: redis.Redis = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        self.redis = redis_client or redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )

    def publish(self, channel: str, event: Event):
        self.redis.publish(channel, event.to_json())

    def publish_container_event(self, container_id: str, event: Event):
        """Send to the container channel and the global channel, then append to the log."""
        self.publish(container_channel(container_id), event)
        self.publish(GLOBAL_CHANNEL, event)
        self.log_event(container_id, event)
        logger.debug(f"Published {event.to_dict()['type']} for container '{container_id}'")

    def log_event(self, container_id: str, event: Event):
        key = container_event_log(container_id)
        self.redis.lpush(key, event.to_json())
        self.redis.ltrim(key, 0, EVENT_LOG_LENGTH - 1)

    def get_recent_events(self, container_id: str, count: int = 50) -> List[Event]:
        """Newest first."""
        events_json = self.redis.lrange(container_event_log(container_id), 0, count - 1)
        return [Event.from_json(e) for e in events_json]
