"""Redis client for session lookup"""
import redis
import logging
from typing import Optional
from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None

# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def set_session(session_id: str, user_id: int) -> None:
    """Map a session id to a user id (written by the auth service)"""
    get_redis_client().setex(f"session:{session_id}", SESSION_TTL, str(user_id))


def get_session(session_id: str) -> Optional[int]:
    """Resolve a session id to a user id"""
    value = get_redis_client().get(f"session:{session_id}")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Malformed session value for session {session_id[:8]}...")
        return None

