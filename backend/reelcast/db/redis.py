"""Redis client for sessions, CSRF tokens, OAuth state and rate limiting"""
import json
import logging
import secrets
from typing import Dict, Optional

import redis

from reelcast.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60

# Rate limiting (fixed window)
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_REQUESTS = 600 if settings.ENVIRONMENT == "production" else 1000
RATE_LIMIT_STRICT_WINDOW = 60  # seconds
RATE_LIMIT_STRICT_REQUESTS = 120 if settings.ENVIRONMENT == "production" else 1000


def set_session(session_id: str, user_id: int) -> None:
    """Store session in Redis"""
    key = f"session:{session_id}"
    get_redis_client().setex(key, SESSION_TTL, user_id)


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    key = f"session:{session_id}"
    user_id = get_redis_client().get(key)
    return int(user_id) if user_id else None


def delete_session(session_id: str) -> None:
    """Delete session and its CSRF token from Redis"""
    client = get_redis_client()
    client.delete(f"session:{session_id}")
    client.delete(f"csrf:{session_id}")


def set_csrf_token(session_id: str, token: str) -> None:
    """Store CSRF token in Redis"""
    key = f"csrf:{session_id}"
    get_redis_client().setex(key, SESSION_TTL, token)


def get_csrf_token(session_id: str) -> Optional[str]:
    """Get CSRF token from Redis"""
    key = f"csrf:{session_id}"
    return get_redis_client().get(key)


def get_or_create_csrf_token(session_id: str) -> str:
    """Get existing CSRF token or create new one if it doesn't exist"""
    csrf_token = get_csrf_token(session_id)
    if not csrf_token:
        csrf_token = secrets.token_urlsafe(32)
        set_csrf_token(session_id, csrf_token)
    return csrf_token


def delete_all_user_sessions(user_id: int) -> int:
    """Delete every session (and CSRF token) that belongs to a user

    Returns:
        Number of sessions deleted
    """
    try:
        client = get_redis_client()
        deleted_count = 0
        for key in client.scan_iter("session:*"):
            stored_user_id = client.get(key)
            if stored_user_id and stored_user_id.isdigit() and int(stored_user_id) == user_id:
                session_id = key.split(":", 1)[1]
                client.delete(key)
                client.delete(f"csrf:{session_id}")
                deleted_count += 1
        return deleted_count
    except redis.RedisError as e:
        logger.warning(f"Failed to delete all sessions for user {user_id}: {e}")
        return 0


def _oauth_state_key(state: str) -> str:
    return f"{settings.ENVIRONMENT}:oauth_state:{state}"


def store_oauth_state(state: str, data: Dict) -> None:
    """Store an OAuth state (and its PKCE verifier / redirect URI) until the callback"""
    get_redis_client().setex(_oauth_state_key(state), settings.OAUTH_STATE_TTL, json.dumps(data))


def pop_oauth_state(state: str) -> Optional[Dict]:
    """Fetch and delete an OAuth state in one round trip; states are single use"""
    pipe = get_redis_client().pipeline()
    pipe.get(_oauth_state_key(state))
    pipe.delete(_oauth_state_key(state))
    raw, _ = pipe.execute()
    if not raw:
        return None
    return json.loads(raw)


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter, return current count.

    Uses a Lua script to atomically increment and set the TTL only for new keys (fixed window)."""
    key = f"ratelimit:{identifier}"
    lua_script = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return count
    """
    count = get_redis_client().eval(lua_script, 1, key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit. Returns True if allowed, False if rate limited."""
    window = RATE_LIMIT_STRICT_WINDOW if strict else RATE_LIMIT_WINDOW
    max_requests = RATE_LIMIT_STRICT_REQUESTS if strict else RATE_LIMIT_REQUESTS
    return increment_rate_limit(identifier, window) <= max_requests
