import asyncio
import logging
from urllib.parse import urlsplit

import httpx

from ingest.config import settings
from ingest.core.metrics import robots_cache_total
from ingest.core.redis import redis_client
from ingest.schemas.fetch import RobotsRule

logger = logging.getLogger(__name__)

ROBOTS_PREFIX = "robots:"


def parse_robots_txt(text: str, bot_token: str | None = None) -> RobotsRule:
    """Collect Allow/Disallow prefixes from every group addressed to ``*`` or our bot.

    Consecutive User-agent lines form one group; the first rule line closes it.
    """
    token = (bot_token or settings.ROBOTS_BOT_TOKEN).lower()
    allowed: list[str] = []
    disallowed: list[str] = []
    relevant = False
    in_agent_lines = False

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        field, value = line.split(":", 1)
        field = field.strip().lower()
        value = value.strip()

        if field == "user-agent":
            agent = value.lower()
            matches = agent == "*" or token in agent
            relevant = (relevant or matches) if in_agent_lines else matches
            in_agent_lines = True
            continue

        in_agent_lines = False
        if not relevant or not value:
            continue
        if field == "disallow":
            disallowed.append(value)
        elif field == "allow":
            allowed.append(value)

    return RobotsRule(allowed=tuple(allowed), disallowed=tuple(disallowed))


def is_path_allowed(path: str, rule: RobotsRule | None) -> bool:
    """Allow prefixes win over Disallow prefixes; ``Disallow: /`` blocks everything else."""
    if rule is None:
        return True
    path = path or "/"
    for prefix in rule.allowed:
        if path.startswith(prefix):
            return True
    for prefix in rule.disallowed:
        if prefix == "/" or path.startswith(prefix):
            return False
    return True


async def _download_robots(domain: str, client: httpx.AsyncClient) -> str | None:
    url = f"https://{domain}/robots.txt"
    timeout = settings.ROBOTS_TIMEOUT_MS / 1000

    async def _read() -> str | None:
        async with client.stream(
            "GET",
            url,
            headers={"User-Agent": settings.USER_AGENT},
            follow_redirects=False,
        ) as response:
            if not response.is_success:
                logger.debug(f"robots.txt for {domain} returned {response.status_code}")
                return None
            chunks = []
            size = 0
            async for chunk in response.aiter_bytes():
                size += len(chunk)
                if size > settings.MAX_ROBOTS_SIZE:
                    logger.info(f"robots.txt for {domain} over {settings.MAX_ROBOTS_SIZE} bytes, truncated")
                    break
                chunks.append(chunk)
            return b"".join(chunks).decode("utf-8", errors="replace")

    try:
        return await asyncio.wait_for(_read(), timeout=timeout)
    except (asyncio.TimeoutError, httpx.HTTPError) as e:
        logger.debug(f"robots.txt fetch for {domain} failed: {type(e).__name__}")
        return None


async def get_robots_rules(
    domain: str,
    store=None,
    client: httpx.AsyncClient | None = None,
) -> RobotsRule:
    """
    Cached rule set for *domain*. Missing or unreachable robots.txt yields an
    empty (permissive) rule, which is cached like any other result.
    """
    store = store if store is not None else redis_client
    cache_key = f"{ROBOTS_PREFIX}{domain.lower()}"

    try:
        cached = await store.get(cache_key)
        if cached:
            robots_cache_total.labels(result="hit").inc()
            return RobotsRule.from_cache(cached)
    except Exception as e:
        logger.warning(f"robots cache read failed for {domain}: {e}")
    robots_cache_total.labels(result="miss").inc()

    if client is None:
        async with httpx.AsyncClient() as own_client:
            text = await _download_robots(domain, own_client)
    else:
        text = await _download_robots(domain, client)

    rule = parse_robots_txt(text) if text is not None else RobotsRule()

    try:
        await store.setex(cache_key, settings.ROBOTS_CACHE_TTL_SECONDS, rule.to_cache())
    except Exception as e:
        logger.warning(f"robots cache write failed for {domain}: {e}")

    return rule


async def is_allowed_by_robots(
    url: str,
    store=None,
    client: httpx.AsyncClient | None = None,
) -> bool:
    parts = urlsplit(url)
    if not parts.hostname:
        return True
    rule = await get_robots_rules(parts.hostname, store=store, client=client)
    return is_path_allowed(parts.path or "/", rule)
