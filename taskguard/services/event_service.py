import json
import time
from enum import Enum
from typing import Any, Union

import redis
import structlog

from taskguard.config import EVENTS_CHANNEL, REDIS_URL

r = redis.from_url(REDIS_URL, decode_responses=True)
logger = structlog.get_logger(__name__)

class EventService:
    """Observability sink: one structured log line plus a Redis publish per event."""

    def __init__(self, client=None, channel: str = EVENTS_CHANNEL):
        self.client = client if client is not None else r
        self.channel = channel

    def emit(self, event: Union[Enum, str], **fields: Any) -> dict:
        name = event.value if isinstance(event, Enum) else str(event)
        payload = {"type": name, "timestamp": time.time(), **fields}
        logger.info(name, **fields)
        try:
            self.client.publish(self.channel, json.dumps(payload, default=str))
        except redis.RedisError as e:
            # events are best-effort; a broker outage must not fail the job
            logger.warning("event_publish_failed", event_type=name, error=str(e))
        return payload
