"""
Vimeo API client.

Covers metadata lookups, short-lived player URLs, privacy changes, deletion,
resumable (tus) uploads and transcoding status.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, BinaryIO, Literal

import httpx
import structlog

from academy.config import Settings, get_settings
from academy.exceptions import UpstreamError

logger = structlog.get_logger()

PROVIDER = "vimeo"
TUS_VERSION = "1.0.0"
UPLOAD_RETRY_DELAYS: tuple[float, ...] = (0, 3, 5, 10, 20)

ProcessingStatus = Literal["uploading", "processing", "available", "error"]
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class VideoInfo:
    """The subset of ``GET /videos/{id}`` the platform uses."""

    uri: str
    name: str
    link: str | None
    player_embed_url: str | None
    duration: int | None
    pictures: list[dict[str, Any]]
    upload_status: str | None = None
    transcode_status: str | None = None

    @property
    def vimeo_id(self) -> str:
        return self.uri.rstrip("/").split("/")[-1]

    @classmethod
    def from_api(cls, body: dict[str, Any]) -> VideoInfo:
        return cls(
            uri=body.get("uri", ""),
            name=body.get("name", ""),
            link=body.get("link"),
            player_embed_url=body.get("player_embed_url"),
            duration=body.get("duration"),
            pictures=list((body.get("pictures") or {}).get("sizes") or []),
            upload_status=(body.get("upload") or {}).get("status"),
            transcode_status=(body.get("transcode") or {}).get("status"),
        )


def pick_thumbnail(info: VideoInfo, width: int = 640) -> str | None:
    """Link of the thumbnail whose width is closest to ``width``."""
    if not info.pictures:
        return None
    best = min(info.pictures, key=lambda size: abs(int(size.get("width", 0)) - width))
    return best.get("link")


def processing_status(info: VideoInfo) -> ProcessingStatus:
    """Collapse upload/transcode states into the four states the admin UI shows."""
    if info.upload_status == "in_progress":
        return "uploading"
    if info.transcode_status == "in_progress":
        return "processing"
    if info.transcode_status == "complete":
        return "available"
    if info.transcode_status == "error" or info.upload_status == "error":
        return "error"
    return "processing"


class VimeoClient:
    """Thin async wrapper over the Vimeo REST API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.vimeo.com",
        timeout: float = 30.0,
        chunk_size: int = 8 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_delays: tuple[float, ...] = UPLOAD_RETRY_DELAYS,
    ) -> None:
        if not access_token:
            logger.warning("vimeo_credentials_missing")
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.retry_delays = retry_delays
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> VimeoClient:
        settings = settings or get_settings()
        return cls(
            access_token=settings.vimeo_access_token,
            base_url=settings.vimeo_base_url,
            timeout=settings.vimeo_request_timeout_seconds,
            chunk_size=settings.upload_chunk_size_bytes,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/vnd.vimeo.*+json;version=3.4",
            },
        )

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json)
                response.raise_for_status()
                return response.json() if response.content else {}
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("vimeo_request_failed", method=method, path=path, status=status)
            if status == 404:
                msg = f"Video not found on Vimeo ({path})"
            elif status in (401, 403):
                msg = "Vimeo rejected the credentials for this video"
            else:
                msg = f"Vimeo API {method} {path} failed with {status}"
            raise UpstreamError(msg, provider=PROVIDER, upstream_status=status) from exc
        except httpx.HTTPError as exc:
            logger.error("vimeo_request_failed", method=method, path=path, error=str(exc))
            raise UpstreamError(f"Vimeo unreachable: {exc}", provider=PROVIDER) from exc

    # --- Metadata ---

    async def get_video_info(self, vimeo_id: str) -> VideoInfo:
        return VideoInfo.from_api(await self._request("GET", f"/videos/{vimeo_id}"))

    async def get_thumbnail(self, vimeo_id: str, width: int = 640) -> str | None:
        """Best-effort; a failed lookup yields None."""
        try:
            info = await self.get_video_info(vimeo_id)
        except UpstreamError:
            logger.warning("vimeo_thumbnail_failed", vimeo_id=vimeo_id)
            return None
        return pick_thumbnail(info, width)

    async def get_secure_player_url(self, vimeo_id: str) -> str:
        """Private embed URL stamped with the issue time.

        Domain whitelisting and privacy settings on the Vimeo side do the
        actual enforcement; callers must request a fresh URL per session.
        """
        info = await self.get_video_info(vimeo_id)
        if not info.player_embed_url:
            raise UpstreamError(f"Vimeo returned no embed URL for {vimeo_id}", provider=PROVIDER)
        separator = "&" if "?" in info.player_embed_url else "?"
        return f"{info.player_embed_url}{separator}t={int(time.time() * 1000)}"

    async def check_video_status(self, vimeo_id: str) -> ProcessingStatus:
        return processing_status(await self.get_video_info(vimeo_id))

    # --- Admin ---

    async def update_privacy(self, vimeo_id: str, view: str = "disable") -> None:
        await self._request("PATCH", f"/videos/{vimeo_id}", json={"privacy": {"view": view, "embed": "whitelist"}})
        logger.info("vimeo_privacy_updated", vimeo_id=vimeo_id, view=view)

    async def delete_video(self, vimeo_id: str) -> None:
        await self._request("DELETE", f"/videos/{vimeo_id}")
        logger.info("vimeo_video_deleted", vimeo_id=vimeo_id)

    # --- Upload ---

    async def upload_video(
        self,
        stream: BinaryIO,
        size: int,
        name: str,
        description: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """
        Upload a file with the tus protocol and return its Vimeo id.

        The video is created private (``view=disable``) and embeddable only on
        whitelisted domains.
        """
        created = await self._request(
            "POST",
            "/me/videos",
            json={
                "upload": {"approach": "tus", "size": size},
                "name": name,
                "description": description or "",
                "privacy": {"view": "disable", "embed": "whitelist"},
            },
        )
        upload_link = created["upload"]["upload_link"]
        vimeo_id = VideoInfo.from_api(created).vimeo_id
        logger.info("vimeo_upload_created", vimeo_id=vimeo_id, size=size)

        offset = 0
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            async for chunk in _read_chunks(stream, self.chunk_size):
                offset = await self._send_chunk(client, upload_link, chunk, offset)
                if on_progress:
                    on_progress(offset, size)

        if offset != size:
            msg = f"Upload of {vimeo_id} ended at {offset} of {size} bytes"
            raise UpstreamError(msg, provider=PROVIDER)
        logger.info("vimeo_upload_complete", vimeo_id=vimeo_id)
        return vimeo_id

    async def _send_chunk(self, client: httpx.AsyncClient, upload_link: str, chunk: bytes, offset: int) -> int:
        """PATCH ``chunk`` at ``offset``, resending any tail the server did not accept."""
        start = offset
        end = offset + len(chunk)
        while offset < end:
            accepted = await self._patch_chunk(client, upload_link, chunk[offset - start :], offset)
            if not offset < accepted <= end:
                msg = f"Upload stalled at offset {offset}, server reported {accepted}"
                raise UpstreamError(msg, provider=PROVIDER)
            if accepted < end:
                logger.info("vimeo_upload_partial_chunk", offset=offset, accepted=accepted, end=end)
            offset = accepted
        return offset

    async def _patch_chunk(self, client: httpx.AsyncClient, upload_link: str, chunk: bytes, offset: int) -> int:
        """Send one chunk, retrying with the configured delays. Returns the new offset."""
        last_error: Exception | None = None
        for delay in self.retry_delays:
            if delay:
                await asyncio.sleep(delay)
            try:
                response = await client.patch(
                    upload_link,
                    content=chunk,
                    headers={
                        "Tus-Resumable": TUS_VERSION,
                        "Upload-Offset": str(offset),
                        "Content-Type": "application/offset+octet-stream",
                    },
                )
                response.raise_for_status()
                return int(response.headers.get("Upload-Offset", offset + len(chunk)))
            except httpx.HTTPError as exc:
                last_error = exc
                logger.warning("vimeo_upload_chunk_retry", offset=offset, error=str(exc))
        raise UpstreamError(f"Upload failed at offset {offset}: {last_error}", provider=PROVIDER) from last_error


async def _read_chunks(stream: BinaryIO, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = await asyncio.to_thread(stream.read, chunk_size)
        if not chunk:
            return
        yield chunk
