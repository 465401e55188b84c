import json
import logging
from typing import Optional

import redis

from examcore.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def feed_channel(exam_id: str) -> str:
    return f"{settings.EVENTS_CHANNEL_PREFIX}:exam:{exam_id}"


def feed_seq_key(exam_id: str) -> str:
    return f"{settings.EVENTS_CHANNEL_PREFIX}:exam:{exam_id}:seq"


def publish_change(event_type: str, exam_id: str, **fields) -> Optional[int]:
    """Publish a change event for the monitoring view.

    Every event carries a per-exam sequence number taken from a Redis counter;
    consumers ignore anything older than the last sequence they applied, so a
    late message can never roll a displayed score back. Best effort: the
    mutation that triggered the event has already been committed.
    """
    if not settings.EVENTS_ENABLED:
        return None
    try:
        seq = int(redis_client.incr(feed_seq_key(exam_id)))
        message = {"seq": seq, "type": event_type, "exam_id": exam_id, **fields}
        redis_client.publish(feed_channel(exam_id), json.dumps(message, default=str))
        return seq
    except redis.RedisError:
        logger.warning("Change feed publish failed for exam %s (%s)", exam_id, event_type, exc_info=True)
        return None
