import asyncio
import hashlib
import logging
from typing import Awaitable, Callable

from ingest.config import settings
from ingest.core.metrics import cache_write_failures_total
from ingest.core.redis import redis_client
from ingest.schemas.parse import ParseRecord

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache:parse:"

CacheWriter = Callable[[ParseRecord], Awaitable[None]]

# Strong refs so the event loop doesn't garbage-collect pending writes
_pending_writes: set[asyncio.Task] = set()


def url_hash(normalized_url: str) -> str:
    """SHA256 hex digest of an already-normalized URL."""
    return hashlib.sha256(normalized_url.encode()).hexdigest()


def _cache_key(digest: str) -> str:
    return f"{CACHE_PREFIX}{digest}"


async def get_cached_parse(digest: str, store=None) -> ParseRecord | None:
    """Retrieve a cached parse record. Returns None if not cached or unreadable."""
    store = store if store is not None else redis_client
    try:
        data = await store.get(_cache_key(digest))
        if data:
            logger.debug(f"Cache hit for {digest[:12]}")
            return ParseRecord.model_validate_json(data)
    except Exception as e:
        logger.warning(f"Cache get failed: {e}")
    return None


async def set_cached_parse(
    record: ParseRecord, store=None, ttl: int | None = None
) -> None:
    """Store a parse record; raises on store errors so the scheduler can count them."""
    store = store if store is not None else redis_client
    ttl = ttl or settings.CACHE_TTL_SECONDS
    ok = await store.setex(_cache_key(record.url_hash), ttl, record.model_dump_json())
    if ok is False and getattr(store, "enabled", True):
        raise RuntimeError("store rejected write")
    logger.debug(f"Cached parse for {record.url_hash[:12]} (TTL={ttl}s)")


async def _run_write(writer: CacheWriter, record: ParseRecord) -> None:
    try:
        await writer(record)
    except Exception as e:
        cache_write_failures_total.inc()
        logger.warning(f"Cache write failed for {record.url_hash[:12]}: {e}")


def schedule_cache_write(
    record: ParseRecord, writer: CacheWriter | None = None
) -> asyncio.Task:
    """Fire-and-forget write; failures are logged and counted, never raised."""
    writer = writer or set_cached_parse
    task = asyncio.create_task(_run_write(writer, record))
    _pending_writes.add(task)
    task.add_done_callback(_pending_writes.discard)
    return task


async def drain_cache_writes() -> None:
    """Wait for all scheduled writes (shutdown and tests)."""
    if _pending_writes:
        await asyncio.gather(*list(_pending_writes), return_exceptions=True)
