"""
Video metadata resolver.

Looks up title, thumbnail and embeddability before a promotion is created.
The ledger core only stores the video id and title; embeddability is a
precondition enforced here by the caller.
"""

from typing import Protocol

import httpx

from vidgro.config import settings
from vidgro.exceptions import (
    MetadataResolutionError,
    VideoNotEmbeddableError,
    VideoNotFoundError,
)
from vidgro.models.domain import VideoMetadata
from vidgro.observability.logging import get_logger

logger = get_logger(__name__)


class MetadataResolver(Protocol):
    """Resolves a platform video id to its metadata."""

    async def resolve(self, target_id: str) -> VideoMetadata: ...


class OEmbedMetadataResolver:
    """Resolver backed by the platform's public oEmbed endpoint."""

    def __init__(
        self,
        oembed_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.oembed_url = oembed_url or settings.oembed_url
        self.timeout = timeout or settings.oembed_timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-initialized HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def resolve(self, target_id: str) -> VideoMetadata:
        """
        Raises:
            VideoNotFoundError: Platform has no such video
            VideoNotEmbeddableError: Owner disabled embedding
            MetadataResolutionError: Lookup failed for any other reason
        """
        watch_url = f"https://www.youtube.com/watch?v={target_id}"
        try:
            response = await self.http_client.get(
                self.oembed_url, params={"url": watch_url, "format": "json"}
            )
        except httpx.HTTPError as exc:
            logger.error("oembed_request_failed", target_id=target_id, error=str(exc))
            raise MetadataResolutionError(target_id, str(exc)) from exc

        # oEmbed answers 401/403 for videos that may not be embedded
        if response.status_code in (401, 403):
            raise VideoNotEmbeddableError(target_id)
        if response.status_code in (400, 404):
            raise VideoNotFoundError(target_id)
        if response.status_code != 200:
            logger.error(
                "oembed_unexpected_status", target_id=target_id, status_code=response.status_code
            )
            raise MetadataResolutionError(target_id, f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise MetadataResolutionError(target_id, "invalid oEmbed response") from exc

        title = str(body.get("title") or "").strip() or f"Video {target_id}"
        return VideoMetadata(
            target_id=target_id,
            title=title[:255],
            thumbnail_url=body.get("thumbnail_url")
            or settings.thumbnail_url_template.format(video_id=target_id),
            embeddable=True,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


_resolver: OEmbedMetadataResolver | None = None


def get_metadata_resolver() -> MetadataResolver:
    """FastAPI dependency returning the process-wide resolver."""
    global _resolver
    if _resolver is None:
        _resolver = OEmbedMetadataResolver()
    return _resolver


async def close_metadata_resolver() -> None:
    global _resolver
    if _resolver is not None:
        await _resolver.close()
        _resolver = None
