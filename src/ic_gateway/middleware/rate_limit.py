"""Per-user rate limit for starting interviews.

Fixed window on Redis: INCR "ratelimit:{user_id}:interview_start", EXPIRE on
the first hit, RateLimitError (9001) once the count passes the limit.

Starting an interview reserves credits, so the limit bounds how fast one
user can churn reservations. If Redis is unreachable the check is skipped;
the ledger's own guards still hold.
"""

import logging

from fastapi import Depends
from redis.exceptions import RedisError

from config.settings import settings
from src.ic_common.errors import RateLimitError
from src.ic_common.redis_client import incr_fixed_window
from src.ic_gateway.auth.dependencies import get_current_user_id

logger = logging.getLogger(__name__)

_WINDOW_SECONDS = 60


async def limit_interview_starts(user_id: str = Depends(get_current_user_id)) -> str:
    key = f"ratelimit:{user_id}:interview_start"
    try:
        count = await incr_fixed_window(key, _WINDOW_SECONDS)
    except (RedisError, OSError) as exc:
        logger.warning("Rate limit check skipped, redis unavailable: %s", exc)
        return user_id
    if count > settings.INTERVIEW_START_RATE_LIMIT:
        logger.warning("Interview start rate limit hit: user=%s count=%d", user_id, count)
        raise RateLimitError()
    return user_id
