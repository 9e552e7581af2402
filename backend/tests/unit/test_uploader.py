"""
Unit Tests — UploadClient
═════════════════════════
Tests for:
  • text shares   → POST /api/upload-text, single status read, no trigger
  • binary shares → multipart POST /api/upload with processType, trigger, poll
  • trigger failure is ignored
  • upload rejection / transport error → error UploadResult (never raises)
  • status callback sequence
  • prepare_file naming and MIME guessing
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from note_companion.client.local_queue import mime_type_for, prepare_file
from note_companion.client.models import SharedFile
from note_companion.client.poller import StatusPoller
from note_companion.client.uploader import UploadClient
from tests.conftest import PNG_BYTES


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

class FakeApi:
    """MockTransport handler emulating the intake, trigger and status routes."""

    def __init__(self, upload_status: int = 200, trigger_status: int = 200):
        self.upload_status = upload_status
        self.trigger_status = trigger_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in ("/api/upload", "/api/upload-text"):
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, json={"error": "rejected"})
            return httpx.Response(200, json={"fileId": 31})
        if path == "/api/trigger-processing":
            return httpx.Response(self.trigger_status, json={"success": True})
        if path == "/api/status/31":
            return httpx.Response(200, json={"fileId": 31, "status": "completed", "textContent": "done"})
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


async def _no_sleep(_seconds: float) -> None:
    return None


def _client(api) -> UploadClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(api), base_url="http://api.test")
    return UploadClient(http, StatusPoller(http, sleep=_no_sleep))


# ─────────────────────────────────────────────────────────────────────────────
# Tests
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestTextUpload:

    async def test_text_share_flow(self):
        api = FakeApi()
        statuses: list[tuple[str, dict | None]] = []

        result = await _client(api).process(
            SharedFile(text="remember the milk", name="note.txt"),
            "tok",
            on_status=lambda status, details=None: statuses.append((status, details)),
        )

        assert api.paths() == ["/api/upload-text", "/api/status/31"]
        assert json.loads(api.requests[0].content) == {"text": "remember the milk", "name": "note.txt"}
        assert api.requests[0].headers["Authorization"] == "Bearer tok"

        assert result.status == "completed"
        assert result.file_id == "31"
        assert result.file_name == "note.txt"
        assert result.mime_type == "text/plain"
        assert [s for s, _ in statuses] == ["uploading", "processing", "completed"]
        assert statuses[1][1] == {"fileId": 31}


@pytest.mark.unit
class TestBinaryUpload:

    async def test_binary_share_flow(self, tmp_path):
        photo = tmp_path / "whiteboard.png"
        photo.write_bytes(PNG_BYTES)
        api = FakeApi()

        result = await _client(api).process(
            SharedFile(uri=photo, mime_type="image/png", name="whiteboard.png", process_type="magic-diagram"),
            "tok",
        )

        assert api.paths() == ["/api/upload", "/api/trigger-processing", "/api/status/31"]
        body = api.requests[0].content
        assert b'name="processType"' in body and b"magic-diagram" in body
        assert b'filename="whiteboard.png"' in body
        assert PNG_BYTES in body
        assert result.status == "completed"
        assert result.text_content == "done"

    async def test_trigger_failure_is_ignored(self, tmp_path):
        photo = tmp_path / "a.jpg"
        photo.write_bytes(b"jpeg")
        api = FakeApi(trigger_status=500)

        result = await _client(api).process(SharedFile(uri=photo, name="a.jpg"), "tok")

        assert result.status == "completed"

    async def test_rejected_upload_returns_error_result(self, tmp_path):
        photo = tmp_path / "a.jpg"
        photo.write_bytes(b"jpeg")
        api = FakeApi(upload_status=413)

        result = await _client(api).process(SharedFile(uri=photo, name="a.jpg"), "tok")

        assert result.status == "error"
        assert "413" in result.error
        assert api.paths() == ["/api/upload"]

    async def test_transport_error_returns_error_result(self, tmp_path):
        def offline(request):
            raise httpx.ConnectError("no network")

        photo = tmp_path / "a.jpg"
        photo.write_bytes(b"jpeg")

        result = await _client(offline).process(SharedFile(uri=photo, name="a.jpg"), "tok")

        assert result.status == "error"
        assert result.error.startswith("Upload failed")

    async def test_missing_local_file_returns_error_result(self, tmp_path):
        result = await _client(FakeApi()).process(SharedFile(uri=tmp_path / "gone.png"), "tok")

        assert result.status == "error"


@pytest.mark.unit
class TestPrepareFile:

    @pytest.mark.parametrize("name,expected", [
        ("a.JPG",    "image/jpeg"),
        ("b.png",    "image/png"),
        ("c.pdf",    "application/pdf"),
        ("d.md",     "text/markdown"),
        ("e.docx",   "application/msword"),
        ("f.heic",   "application/octet-stream"),
        ("noext",    "application/octet-stream"),
    ])
    def test_mime_from_extension(self, name, expected):
        assert mime_type_for(name) == expected

    def test_generated_name_for_text(self):
        assert prepare_file(SharedFile(text="x"), now_ms=123) == ("shared-123.txt", "text/plain")

    def test_generated_name_keeps_file_extension(self):
        name, mime = prepare_file(SharedFile(uri=Path("/tmp/IMG_1.jpeg")), now_ms=5)
        assert (name, mime) == ("shared-5.jpeg", "image/jpeg")

    def test_explicit_mime_type_wins(self):
        assert prepare_file(SharedFile(text="x", name="n.bin", mime_type="text/plain"))[1] == "text/plain"
