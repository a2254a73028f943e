"""Webpage metadata scraper for links supplied as evidence.

Fetches the page with a browser-like User-Agent and reads Open Graph
tags (falling back to <title> and the description meta tag). Never
raises: any failure means "no preview" and returns None.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from src.admin.events import emit
from src.config import settings
from src.enrichment.schemas import PageMetadata
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Only the head of large pages is read and parsed
_MAX_HTML_BYTES = 500_000

_HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


def _meta_content(soup: BeautifulSoup, *keys: str) -> str | None:
    """Return the first non-empty content of <meta property=key> or <meta name=key>."""
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag is None:
            continue
        content = tag.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
    return None


def parse_page_metadata(html: str, page_url: str) -> PageMetadata | None:
    """Extract title/description/image/site name from an HTML document.

    Returns None when the page carries none of title, description or image.
    """
    soup = BeautifulSoup(html[:_MAX_HTML_BYTES], "html.parser")

    title = _meta_content(soup, "og:title", "twitter:title")
    if title is None and soup.title is not None and soup.title.string:
        title = soup.title.string

    description = _meta_content(soup, "og:description", "twitter:description", "description")

    image = _meta_content(soup, "og:image", "og:image:url", "twitter:image")
    if image is not None:
        image = urljoin(page_url, image)

    site_name = _meta_content(soup, "og:site_name", "application-name")

    metadata = PageMetadata(title=title, description=description, image=image, site_name=site_name)
    if metadata.is_empty:
        return None
    return metadata


class MetadataClient:
    """Async fetcher for page previews."""

    def __init__(self) -> None:
        self._deadline = settings.enrichment.metadata_timeout_seconds
        self._timeout = httpx.Timeout(self._deadline, connect=5.0)
        self._headers = {
            "User-Agent": settings.enrichment.metadata_user_agent,
            "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
        }

    async def fetch(self, url: str) -> PageMetadata | None:
        """GET the page and parse its metadata; None on any failure.

        The whole fetch shares one deadline, and at most ``_MAX_HTML_BYTES``
        of an HTML body is read.
        """
        if urlparse(url).scheme not in {"http", "https"}:
            return None

        try:
            async with asyncio.timeout(self._deadline):
                content_type, html, final_url = await self._download(url)
        except httpx.HTTPStatusError as exc:
            logger.warning("Metadata fetch got HTTP %s for %s", exc.response.status_code, url)
            await self._degraded(url, f"http_{exc.response.status_code}")
            return None
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Metadata fetch failed for %s: %s", url, type(exc).__name__)
            await self._degraded(url, type(exc).__name__)
            return None
        except TimeoutError:
            logger.warning("Metadata fetch for %s exceeded %ss", url, self._deadline)
            await self._degraded(url, "deadline")
            return None

        if html is None:
            logger.info("Metadata fetch skipped non-HTML %s (%s)", url, content_type or "no content-type")
            await self._degraded(url, "not_html")
            return None

        metadata = parse_page_metadata(html, final_url)
        if metadata is None:
            await self._degraded(url, "no_metadata")
        return metadata

    async def _download(self, url: str) -> tuple[str, str | None, str]:
        """Return (content type, decoded HTML or None if not HTML, final URL)."""
        async with (
            httpx.AsyncClient(timeout=self._timeout, headers=self._headers, follow_redirects=True) as client,
            client.stream("GET", url) as response,
        ):
            response.raise_for_status()
            content_type = response.headers.get("content-type", "").lower()
            if not content_type.startswith(_HTML_CONTENT_TYPES):
                return content_type, None, str(response.url)

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) >= _MAX_HTML_BYTES:
                    break
            html = bytes(body[:_MAX_HTML_BYTES]).decode(response.encoding or "utf-8", errors="replace")
            return content_type, html, str(response.url)

    @staticmethod
    async def _degraded(url: str, reason: str) -> None:
        await emit(SystemEvent(
            event_type=EventType.ENRICHMENT_DEGRADED,
            data={"enricher": "page_metadata", "host": urlparse(url).hostname, "reason": reason},
            source_module="enrichment.metadata",
        ))


# Module-level singleton
metadata_client = MetadataClient()
