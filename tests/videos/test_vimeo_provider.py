"""Vimeo client against a mocked transport."""

from __future__ import annotations

import io
import json

import httpx
import pytest

from academy.exceptions import UpstreamError
from academy.videos.provider import VideoInfo, VimeoClient, pick_thumbnail, processing_status

VIDEO_BODY = {
    "uri": "/videos/987",
    "name": "Lesson",
    "link": "https://vimeo.com/987",
    "player_embed_url": "https://player.vimeo.com/video/987?h=abc",
    "duration": 754,
    "pictures": {
        "sizes": [
            {"width": 100, "link": "https://i.vimeocdn.com/100.jpg"},
            {"width": 640, "link": "https://i.vimeocdn.com/640.jpg"},
            {"width": 1280, "link": "https://i.vimeocdn.com/1280.jpg"},
        ]
    },
    "upload": {"status": "complete"},
    "transcode": {"status": "complete"},
}

UPLOAD_LINK = "https://files.vimeo.test/upload/abc"


def _client(handler, **kwargs) -> VimeoClient:
    return VimeoClient(access_token="vimeo-token", transport=httpx.MockTransport(handler), **kwargs)


class TestMetadata:
    def test_vimeo_id_from_uri(self):
        assert VideoInfo.from_api(VIDEO_BODY).vimeo_id == "987"

    def test_thumbnail_closest_to_640(self):
        info = VideoInfo.from_api(VIDEO_BODY)
        assert pick_thumbnail(info) == "https://i.vimeocdn.com/640.jpg"

    def test_thumbnail_without_pictures(self):
        assert pick_thumbnail(VideoInfo.from_api({"uri": "/videos/1"})) is None

    @pytest.mark.parametrize(
        ("upload", "transcode", "expected"),
        [
            ("in_progress", None, "uploading"),
            ("complete", "in_progress", "processing"),
            ("complete", "complete", "available"),
            ("complete", "error", "error"),
            ("error", None, "error"),
            (None, None, "processing"),
        ],
    )
    def test_processing_status(self, upload, transcode, expected):
        body = {"uri": "/videos/1", "upload": {"status": upload}, "transcode": {"status": transcode}}
        assert processing_status(VideoInfo.from_api(body)) == expected

    @pytest.mark.asyncio
    async def test_get_video_info_sends_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=VIDEO_BODY)

        info = await _client(handler).get_video_info("987")

        assert seen[0].url.path == "/videos/987"
        assert seen[0].headers["Authorization"] == "Bearer vimeo-token"
        assert info.duration == 754
        assert info.link == "https://vimeo.com/987"

    @pytest.mark.asyncio
    async def test_not_found_becomes_upstream_error(self):
        client = _client(lambda request: httpx.Response(404, json={"error": "gone"}))

        with pytest.raises(UpstreamError) as exc_info:
            await client.get_video_info("1")
        assert exc_info.value.provider == "vimeo"
        assert exc_info.value.upstream_status == 404

    @pytest.mark.asyncio
    async def test_thumbnail_lookup_failure_yields_none(self):
        client = _client(lambda request: httpx.Response(500))

        assert await client.get_thumbnail("1") is None


class TestSecurePlayerUrl:
    @pytest.mark.asyncio
    async def test_timestamp_appended(self):
        url = await _client(lambda request: httpx.Response(200, json=VIDEO_BODY)).get_secure_player_url("987")

        base, _, stamp = url.partition("&t=")
        assert base == "https://player.vimeo.com/video/987?h=abc"
        assert stamp.isdigit()

    @pytest.mark.asyncio
    async def test_url_without_query_string(self):
        body = {**VIDEO_BODY, "player_embed_url": "https://player.vimeo.com/video/987"}
        url = await _client(lambda request: httpx.Response(200, json=body)).get_secure_player_url("987")

        assert url.startswith("https://player.vimeo.com/video/987?t=")

    @pytest.mark.asyncio
    async def test_missing_embed_url(self):
        body = {**VIDEO_BODY, "player_embed_url": None}

        with pytest.raises(UpstreamError):
            await _client(lambda request: httpx.Response(200, json=body)).get_secure_player_url("987")


class TestUpload:
    @pytest.mark.asyncio
    async def test_tus_upload_in_chunks(self):
        created: list[dict] = []
        patches: list[tuple[str, bytes]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                created.append(json.loads(request.content))
                return httpx.Response(200, json={"uri": "/videos/555", "upload": {"upload_link": UPLOAD_LINK}})
            offset = int(request.headers["Upload-Offset"])
            patches.append((request.headers["Upload-Offset"], request.content))
            assert request.headers["Tus-Resumable"] == "1.0.0"
            return httpx.Response(204, headers={"Upload-Offset": str(offset + len(request.content))})

        progress: list[tuple[int, int]] = []
        data = b"0123456789"
        client = _client(handler, chunk_size=4)

        vimeo_id = await client.upload_video(
            io.BytesIO(data), len(data), "Lesson 1", on_progress=lambda sent, total: progress.append((sent, total))
        )

        assert vimeo_id == "555"
        assert created[0]["upload"] == {"approach": "tus", "size": 10}
        assert created[0]["privacy"] == {"view": "disable", "embed": "whitelist"}
        assert patches == [("0", b"0123"), ("4", b"4567"), ("8", b"89")]
        assert progress[-1] == (10, 10)

    @pytest.mark.asyncio
    async def test_chunk_retried_after_failure(self):
        attempts = {"patch": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"uri": "/videos/556", "upload": {"upload_link": UPLOAD_LINK}})
            attempts["patch"] += 1
            if attempts["patch"] == 1:
                return httpx.Response(500)
            return httpx.Response(204, headers={"Upload-Offset": "3"})

        client = _client(handler, retry_delays=(0, 0))

        assert await client.upload_video(io.BytesIO(b"abc"), 3, "Lesson") == "556"
        assert attempts["patch"] == 2

    @pytest.mark.asyncio
    async def test_upload_gives_up_after_retries(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"uri": "/videos/557", "upload": {"upload_link": UPLOAD_LINK}})
            return httpx.Response(503)

        client = _client(handler, retry_delays=(0, 0, 0))

        with pytest.raises(UpstreamError, match="offset 0"):
            await client.upload_video(io.BytesIO(b"abc"), 3, "Lesson")

    @pytest.mark.asyncio
    async def test_unaccepted_tail_is_resent(self):
        patches: list[tuple[str, bytes]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"uri": "/videos/558", "upload": {"upload_link": UPLOAD_LINK}})
            offset = int(request.headers["Upload-Offset"])
            patches.append((request.headers["Upload-Offset"], request.content))
            # Server stores at most three bytes per request.
            return httpx.Response(204, headers={"Upload-Offset": str(offset + min(3, len(request.content)))})

        data = b"0123456789"
        client = _client(handler, chunk_size=4)

        assert await client.upload_video(io.BytesIO(data), len(data), "Lesson") == "558"
        assert patches == [("0", b"012"), ("3", b"3"), ("4", b"456"), ("7", b"7"), ("8", b"89")]
        assert b"".join(body for _, body in patches) == data

    @pytest.mark.asyncio
    async def test_offset_not_advancing_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"uri": "/videos/559", "upload": {"upload_link": UPLOAD_LINK}})
            return httpx.Response(204, headers={"Upload-Offset": request.headers["Upload-Offset"]})

        client = _client(handler, chunk_size=4)

        with pytest.raises(UpstreamError, match="stalled at offset 0"):
            await client.upload_video(io.BytesIO(b"abcd"), 4, "Lesson")
