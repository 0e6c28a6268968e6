"""
In-memory activity log for engine events (assignments, rebalances, first responses, SLA sweeps).
The worker publishes events via Redis pub/sub; the API subscribes in a background thread.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import redis

from assignment_engine.config import REDIS_URL

logger = logging.getLogger(__name__)

ACTIVITY_CHANNEL = "assignment_activity"
MAX_EVENTS = 200


@dataclass
class ActivityEvent:
    """A single engine activity event."""

    ts: float = field(default_factory=time.time)
    type: str = ""
    data: dict[str, Any] = field(default_factory=dict)


_events: list[ActivityEvent] = []
_lock = threading.Lock()


def emit(event_type: str, data: dict[str, Any] | None = None) -> None:
    """Append an event to the in-process activity log."""
    with _lock:
        _events.append(ActivityEvent(type=event_type, data=data or {}))
        while len(_events) > MAX_EVENTS:
            _events.pop(0)


def get_recent(limit: int = 100) -> list[dict]:
    """Most recent events, newest last. Each item is a dict with ts, type, data."""
    with _lock:
        return [{"ts": e.ts, "type": e.type, "data": e.data} for e in _events[-limit:]]


def clear() -> None:
    with _lock:
        _events.clear()


def _redis_subscriber_thread() -> None:
    """Daemon thread body: subscribe to the activity channel and append worker events."""
    try:
        r = redis.from_url(REDIS_URL, decode_responses=True)
        pubsub = r.pubsub()
        pubsub.subscribe(ACTIVITY_CHANNEL)
        logger.info("Activity subscriber listening on channel %s", ACTIVITY_CHANNEL)
        for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                payload = json.loads(message["data"])
                emit(payload.get("type", "worker_event"), payload.get("data", payload))
            except (ValueError, AttributeError) as e:
                logger.warning("Activity message parse error: %s", e)
    except redis.RedisError as e:
        logger.warning("Activity Redis subscriber failed: %s", e)


def start_redis_subscriber() -> None:
    t = threading.Thread(target=_redis_subscriber_thread, daemon=True)
    t.start()


def publish_event(event_type: str, data: dict[str, Any]) -> None:
    """Publish an event to Redis (call from the worker). Connection and encoding errors are logged, not raised."""
    try:
        message = json.dumps({"type": event_type, "data": data})
        r = redis.from_url(REDIS_URL, decode_responses=True)
        r.publish(ACTIVITY_CHANNEL, message)
    except (redis.RedisError, TypeError, ValueError) as e:
        logger.warning("Activity publish failed: %s", e)
