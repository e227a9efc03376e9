from __future__ import annotations
import json
from typing import Optional

import redis
from config.settings import settings

STATE_KEY_FMT = "oauth_state:{state}"

_redis_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def save_oauth_state(state: str, payload: dict) -> None:
    """Remember who started an OAuth flow until the provider redirects back (expires after the TTL)."""
    get_redis().setex(STATE_KEY_FMT.format(state=state), settings.OAUTH_STATE_TTL_SECONDS, json.dumps(payload))


def pop_oauth_state(state: str) -> Optional[dict]:
    """Fetch and forget a pending OAuth state; each state can complete one callback."""
    # GETDEL reads and removes in one step, so two callbacks cannot both claim a state
    raw = get_redis().getdel(STATE_KEY_FMT.format(state=state))
    if not raw:
        return None
    return json.loads(raw)
