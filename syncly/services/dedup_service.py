import redis.asyncio as redis_async

from syncly.config import settings
from syncly.logging_config import get_logger

logger = get_logger("dedup_service")

DEDUP_PREFIX = "syncly:dedup"
SOCKET_TIMEOUT_SECONDS = 0.3

_redis_client = None


def _get_redis_client():
    global _redis_client
    if not settings.redis_url:
        return None
    if _redis_client is None:
        _redis_client = redis_async.from_url(
            settings.redis_url,
            socket_timeout=SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
        )
    return _redis_client


async def is_duplicate_message(shop_id, message_id: str | None, redis_client=None) -> bool:
    """True when Meta redelivers a message id we already accepted.

    Without Redis configured, or when it is unreachable, every message counts as new.
    """
    if not message_id:
        return False
    client = redis_client or _get_redis_client()
    if client is None:
        return False

    key = f"{DEDUP_PREFIX}:{shop_id}:{message_id}"
    try:
        was_set = await client.set(key, "1", ex=settings.dedup_ttl_seconds, nx=True)
    except Exception as e:
        logger.warning(f"Dedup redis unavailable, accepting message: {e}")
        return False
    return not was_set
