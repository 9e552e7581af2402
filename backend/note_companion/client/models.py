"""
Client-side data types shared by the local queue, the uploader and the poller.

JSON written to disk and exchanged with the API is camelCase, matching the
mobile app's existing metadata files and the server's wire format.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

PreviewType = Literal["text", "image", "other"]


class _ClientModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


@dataclass
class SharedFile:
    """Something the user shared into the app: either inline text or a file on disk."""
    uri:          Path | None = None
    mime_type:    str | None = None
    name:         str | None = None
    text:         str | None = None
    process_type: str = "standard-ocr"

    @property
    def is_text(self) -> bool:
        return self.text is not None


@dataclass(frozen=True)
class Preview:
    preview_type:   PreviewType
    preview_text:   str | None = None
    thumbnail_path: Path | None = None
    truncated:      bool = False     # UI appends an ellipsis when True


@dataclass(frozen=True)
class SavedItem:
    local_id: str
    preview:  Preview


class UploadResult(_ClientModel):
    """
    Final outcome of one upload-and-process run.

    status is "completed" or "error" once terminal; "processing" when the
    caller gave up waiting.
    """
    status:              str
    text_content:        str | None = None
    generated_image_url: str | None = None
    tokens_used:         int | None = None
    error:               str | None = None
    file_id:             str | None = None
    file_name:           str | None = None
    mime_type:           str | None = None

    @classmethod
    def failure(cls, message: str, file_id: Any = None) -> "UploadResult":
        return cls(status="error", error=message, file_id=None if file_id is None else str(file_id))


class LocalFileMetadata(_ClientModel):
    """metadata.json of one pending_uploads/<local_id>/ directory."""
    local_id:               str
    name:                   str | None = None
    mime_type:              str | None = None
    process_type:           str = "standard-ocr"
    status:                 Literal["pending", "processing", "completed", "error"] = "pending"
    created_at:             datetime
    content_file:           str
    is_text:                bool = False
    preview_type:           PreviewType = "other"
    text_preview:           str | None = None
    thumbnail_path:         str | None = None
    server_file_id:         str | None = None
    last_attempt:           datetime | None = None
    error:                  str | None = None
    attempts:               int = 0
    dead_lettered:          bool = False
    processed_text_preview: str | None = None
    processed_at:           datetime | None = None
