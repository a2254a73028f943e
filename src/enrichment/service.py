"""Page metadata service: orchestrates the scraper + Redis cache."""

from __future__ import annotations

import hashlib
import logging

import redis.asyncio as aioredis

from src.config import settings
from src.enrichment.metadata import metadata_client
from src.enrichment.schemas import PageMetadata

logger = logging.getLogger(__name__)

_CACHE_KEY_PREFIX = "meta:"


def _cache_key(url: str) -> str:
    return _CACHE_KEY_PREFIX + hashlib.sha1(url.encode("utf-8")).hexdigest()  # noqa: S324


async def lookup_page_metadata(url: str, redis: aioredis.Redis) -> PageMetadata | None:
    """Return the preview for ``url``, using Redis to skip repeat scrapes.

    Steps:
    1. Check Redis cache (key: "meta:{sha1(url)}")
    2. On miss: scrape the page
    3. Cache successful previews only, so a transient failure is retried next time
    """
    key = _cache_key(url)

    try:
        cached_raw = await redis.get(key)
    except Exception:
        logger.warning("Metadata cache read failed, fetching %s directly", url)
        cached_raw = None

    if cached_raw:
        try:
            return PageMetadata.model_validate_json(cached_raw)
        except ValueError:
            logger.warning("Failed to deserialize cached metadata for %s, re-fetching", url)

    metadata = await metadata_client.fetch(url)
    if metadata is None:
        return None

    try:
        await redis.setex(key, settings.enrichment.metadata_cache_ttl_seconds, metadata.model_dump_json())
    except Exception:
        logger.warning("Failed to cache metadata for %s", url)

    return metadata
