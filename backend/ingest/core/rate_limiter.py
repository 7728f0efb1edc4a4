import logging
import time
from dataclasses import dataclass

from ingest.config import settings
from ingest.core.metrics import rate_limit_rejections_total
from ingest.core.redis import redis_client
from ingest.schemas.fetch import RATE_LIMITED, FetchError

logger = logging.getLogger(__name__)

CLIENT_WINDOW = 3600  # seconds
DOMAIN_WINDOW = 60


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    error: FetchError | None = None
    client_count: int = 0
    domain_count: int = 0


def _client_key(client_id: str, now: int) -> str:
    return f"ratelimit:ip:{client_id}:{now // CLIENT_WINDOW}"


def _domain_key(domain: str, now: int) -> str:
    return f"ratelimit:domain:{domain}:{now // DOMAIN_WINDOW}"


async def _hit(store, key: str, window: int) -> int:
    """Increment a fixed-window counter; the first hit in a window sets its expiry."""
    count = int(await store.incr(key) or 0)
    if count == 1:
        await store.expire(key, window)
    return count


async def check_rate_limit(
    client_id: str,
    domain: str,
    store=None,
    now: float | None = None,
) -> RateLimitResult:
    """
    Fixed-window counters: per client per hour, per domain per minute.
    Fails open when the store is unreachable.
    """
    store = store if store is not None else redis_client
    now_s = int(time.time() if now is None else now)

    try:
        client_count = await _hit(store, _client_key(client_id, now_s), CLIENT_WINDOW)
        if client_count > settings.RATE_LIMIT_PER_CLIENT:
            rate_limit_rejections_total.labels(scope="client").inc()
            logger.info(f"Rate limit hit for client {client_id} ({client_count}/h)")
            return RateLimitResult(
                allowed=False,
                error=FetchError(
                    code=RATE_LIMITED,
                    message="Client rate limit exceeded. Try again later.",
                ),
                client_count=client_count,
            )

        domain_count = await _hit(store, _domain_key(domain, now_s), DOMAIN_WINDOW)
        if domain_count > settings.RATE_LIMIT_PER_DOMAIN:
            rate_limit_rejections_total.labels(scope="domain").inc()
            logger.info(f"Rate limit hit for domain {domain} ({domain_count}/min)")
            return RateLimitResult(
                allowed=False,
                error=FetchError(
                    code=RATE_LIMITED,
                    message="Domain rate limit exceeded. Try again later.",
                ),
                client_count=client_count,
                domain_count=domain_count,
            )
    except Exception as e:
        logger.warning(f"Rate limit check failed, allowing request: {e}")
        return RateLimitResult(allowed=True)

    return RateLimitResult(
        allowed=True, client_count=client_count, domain_count=domain_count
    )
