"""
Unit Tests — ContentExtractor and the extraction strategies
════════════════════════════════════════════════════════════
Tests for:
  • select_strategy      — every row of the dispatch table, defaults, casing
  • derive_object_key    — explicit key, URL derivation, underivable URL
  • StandardOcrStrategy  — reported tokens, estimate fallback, empty text,
                           missing public URL, provider failure
  • MagicDiagramStrategy — generated key layout, fixed cost, temp file
                           cleanup on success and on every failure path
  • PdfPendingStrategy / PlainTextStrategy / UnsupportedStrategy

Every test goes through ContentExtractor.extract(), which must never raise.
"""

from __future__ import annotations

import re

import httpx
import openai
import pytest

from note_companion.db.uploads_repo import UploadRecord
from note_companion.processing.extractor import ObjectKeyDerivationError, derive_object_key
from note_companion.processing.strategies import (
    MAGIC_DIAGRAM_TOKEN_COST,
    OCR_EMPTY_PLACEHOLDER,
    PDF_PENDING_ERROR,
    generated_image_key,
)
from note_companion.schemas.uploads import UploadStatus
from note_companion.storage.r2 import UploadError
from tests.conftest import PNG_BYTES, PUBLIC_BASE, TEST_USER_ID


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _record(**overrides) -> UploadRecord:
    values = {
        "id":            1,
        "user_id":       TEST_USER_ID,
        "file_type":     "image/png",
        "status":        UploadStatus.PROCESSING,
        "process_type":  "standard-ocr",
        "public_url":    f"{PUBLIC_BASE}/uploads/{TEST_USER_ID}/sketch.png",
        "original_name": "sketch.png",
    }
    values.update(overrides)
    return UploadRecord(**values)


def _status_error(cls, status_code: int, body) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return cls("provider said no", response=response, body=body)


# ─────────────────────────────────────────────────────────────────────────────
# Dispatch
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestStrategySelection:

    @pytest.mark.parametrize("process_type,file_type,expected", [
        ("magic-diagram", "image/png",       "magic-diagram"),
        ("standard-ocr",  "image/jpeg",      "standard-ocr"),
        (None,            "image/webp",      "standard-ocr"),
        ("standard-ocr",  "IMAGE/PNG",       "standard-ocr"),
        ("standard-ocr",  "application/pdf", "pdf"),
        ("magic-diagram", "application/pdf", "pdf"),
        ("standard-ocr",  "text/plain",      "plain-text"),
        ("standard-ocr",  "text/markdown",   "plain-text"),
        ("standard-ocr",  "video/mp4",       "unsupported"),
        ("unknown-mode",  "image/png",       "unsupported"),
    ])
    def test_dispatch_table(self, extractor, process_type, file_type, expected):
        assert extractor.select_strategy(process_type, file_type).name == expected


@pytest.mark.unit
class TestObjectKeyDerivation:

    def test_explicit_key_wins(self):
        record = _record(object_key="uploads/u/explicit.png", public_url="https://x/uploads/u/other.png")
        assert derive_object_key(record) == "uploads/u/explicit.png"

    def test_key_derived_from_uploads_segment(self):
        record = _record(object_key=None, public_url="https://files.example.com/uploads/u1/a/b.txt")
        assert derive_object_key(record) == "uploads/u1/a/b.txt"

    @pytest.mark.parametrize("url", [None, "", "https://files.example.com/other/u1/b.txt"])
    def test_underivable_url_raises(self, url):
        with pytest.raises(ObjectKeyDerivationError, match="Could not determine object key"):
            derive_object_key(_record(object_key=None, public_url=url))

    async def test_underivable_key_becomes_error_result(self, extractor):
        record = _record(file_type="text/plain", object_key=None, public_url="https://x/elsewhere/a.txt")

        result = await extractor.extract(record)

        assert result.status == UploadStatus.ERROR
        assert "Could not determine object key" in result.error
        assert result.tokens_used == 0


# ─────────────────────────────────────────────────────────────────────────────
# standard-ocr
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestStandardOcr:

    async def test_reported_tokens_are_used(self, extractor, fake_ocr):
        result = await extractor.extract(_record())

        assert result.status == UploadStatus.COMPLETED
        assert result.text_content == fake_ocr.text
        assert result.tokens_used == 120
        assert result.generated_image_url is None
        assert result.error is None
        assert fake_ocr.calls == [f"{PUBLIC_BASE}/uploads/{TEST_USER_ID}/sketch.png"]

    async def test_missing_usage_falls_back_to_length_estimate(self, extractor, fake_ocr):
        fake_ocr.text = "x" * 10
        fake_ocr.total_tokens = None

        result = await extractor.extract(_record())

        assert result.tokens_used == 3   # ceil(10 / 4)

    async def test_empty_text_gets_placeholder(self, extractor, fake_ocr):
        fake_ocr.text = "   "
        fake_ocr.total_tokens = 7

        result = await extractor.extract(_record())

        assert result.status == UploadStatus.COMPLETED
        assert result.text_content == OCR_EMPTY_PLACEHOLDER
        assert result.tokens_used == 7

    async def test_missing_public_url_is_error(self, extractor, fake_ocr):
        result = await extractor.extract(_record(public_url=None))

        assert result.status == UploadStatus.ERROR
        assert result.error.startswith("Error processing image OCR: ")
        assert "Missing public URL" in result.error
        assert fake_ocr.calls == []

    async def test_provider_error_message_is_decoded(self, extractor, fake_ocr):
        fake_ocr.error = _status_error(
            openai.RateLimitError, 429, {"error": {"message": "Rate limit reached for gpt-4.1"}}
        )

        result = await extractor.extract(_record())

        assert result.status == UploadStatus.ERROR
        assert result.error == "Error processing image OCR: Rate limit reached for gpt-4.1"
        assert result.text_content is None
        assert result.tokens_used == 0


# ─────────────────────────────────────────────────────────────────────────────
# magic-diagram
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestMagicDiagram:

    def test_generated_key_layout(self):
        assert generated_image_key("u1", "My Sketch.jpeg", 1700000000000, "a1b2c3d4") == (
            "generated/u1/1700000000000-a1b2c3d4-My Sketch.png"
        )

    def test_generated_key_without_name(self):
        assert generated_image_key("u1", "", 1, "ff").endswith("-diagram.png")

    async def test_success_uploads_png_and_bills_fixed_cost(self, extractor, fake_storage, fake_editor):
        record = _record(process_type="magic-diagram")

        result = await extractor.extract(record)

        assert result.status == UploadStatus.COMPLETED
        assert result.tokens_used == MAGIC_DIAGRAM_TOKEN_COST
        assert result.text_content is None
        assert len(fake_storage.uploads) == 1

        key, body, content_type = fake_storage.uploads[0]
        assert re.fullmatch(rf"generated/{TEST_USER_ID}/\d+-[0-9a-f]{{8}}-sketch\.png", key)
        assert body == PNG_BYTES
        assert content_type == "image/png"
        assert result.generated_image_url == f"{PUBLIC_BASE}/{key}"

        assert fake_editor.seen_bytes == [PNG_BYTES]
        assert "sketch.png" in fake_editor.prompts[0]

    async def test_temp_file_removed_after_success(self, extractor, fake_editor, tmp_path):
        await extractor.extract(_record(process_type="magic-diagram"))

        assert fake_editor.seen_paths[0].parent == tmp_path
        assert not fake_editor.seen_paths[0].exists()
        assert list(tmp_path.iterdir()) == []

    async def test_model_failure_is_error_and_cleans_up(self, extractor, fake_editor, fake_storage, tmp_path):
        fake_editor.error = RuntimeError("image model exploded")

        result = await extractor.extract(_record(process_type="magic-diagram"))

        assert result.status == UploadStatus.ERROR
        assert result.error == "Error generating diagram: image model exploded"
        assert result.tokens_used == 0
        assert result.generated_image_url is None
        assert fake_storage.uploads == []
        assert list(tmp_path.iterdir()) == []

    async def test_empty_model_payload_is_error(self, extractor, fake_editor, tmp_path):
        fake_editor.payload = None

        result = await extractor.extract(_record(process_type="magic-diagram"))

        assert result.status == UploadStatus.ERROR
        assert "No image data received" in result.error
        assert list(tmp_path.iterdir()) == []

    async def test_storage_upload_failure_is_error_and_cleans_up(self, extractor, fake_storage, tmp_path):
        fake_storage.upload_error = UploadError("Failed to upload generated/x.png: denied", "generated/x.png")

        result = await extractor.extract(_record(process_type="magic-diagram"))

        assert result.status == UploadStatus.ERROR
        assert result.error.startswith("Error generating diagram: Failed to upload")
        assert list(tmp_path.iterdir()) == []

    async def test_missing_source_object_is_error(self, extractor, fake_storage, fake_editor):
        fake_storage.objects.clear()

        result = await extractor.extract(_record(process_type="magic-diagram"))

        assert result.status == UploadStatus.ERROR
        assert "Object not found" in result.error
        assert fake_editor.seen_paths == []


# ─────────────────────────────────────────────────────────────────────────────
# Deterministic outcomes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDeterministicStrategies:

    async def test_pdf_is_descriptive_error(self, extractor):
        result = await extractor.extract(_record(file_type="application/pdf"))

        assert result.status == UploadStatus.ERROR
        assert result.error == PDF_PENDING_ERROR
        assert result.text_content and "Processing Pending" in result.text_content
        assert result.tokens_used == 0

    async def test_plain_text_passthrough(self, extractor, fake_storage):
        fake_storage.objects["uploads/u1/notes.md"] = "# héllo\n".encode()
        record = _record(file_type="text/markdown", object_key="uploads/u1/notes.md")

        result = await extractor.extract(record)

        assert result.status == UploadStatus.COMPLETED
        assert result.text_content == "# héllo\n"
        assert result.tokens_used == 0

    async def test_empty_text_file_completes(self, extractor, fake_storage):
        fake_storage.objects["uploads/u1/empty.txt"] = b""
        record = _record(file_type="text/plain", object_key="uploads/u1/empty.txt")

        result = await extractor.extract(record)

        assert result.status == UploadStatus.COMPLETED
        assert result.text_content == ""

    async def test_unsupported_type_names_type_and_mode(self, extractor):
        result = await extractor.extract(_record(file_type="video/mp4"))

        assert result.status == UploadStatus.ERROR
        assert result.error == "Unsupported file type/processType: video/mp4 / standard-ocr"
        assert "Unsupported" in result.text_content
        assert result.tokens_used == 0

    async def test_zip_archive_is_unsupported(self, extractor):
        result = await extractor.extract(_record(file_type="application/zip"))

        assert result.status == UploadStatus.ERROR
        assert result.error == "Unsupported file type/processType: application/zip / standard-ocr"
        assert result.text_content == "[Unsupported: application/zip]"
        assert result.tokens_used == 0
