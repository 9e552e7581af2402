"""
Offline-first local upload queue.

Shared items are persisted under a root directory before any network call,
then drained one at a time by BackgroundSync:

    <root>/
      pending_uploads/
        sync_queue.json            ["local-...", ...]   FIFO of local ids
        dead_letter.json           items that exhausted their attempts
        <local_id>/
          metadata.json            LocalFileMetadata (camelCase)
          content.txt | <name>     the shared text or a copy of the file
      previews/
        <local_id>-thumb.<ext>     image thumbnails

Queue rules:
  - head missing on disk or already completed  → dropped
  - content file missing                       → error recorded, dropped
  - processing completed                       → metadata updated, dropped
  - processing error                           → moved to the tail; after
                                                 max_attempts it moves to
                                                 the dead-letter list
  - anything else (still processing)           → stays at the head

Every JSON file is written to a sibling .tmp file and then os.replace()d so
a crash never leaves a half-written queue behind. A queue file that cannot
be parsed is treated as empty.
"""

from __future__ import annotations

import json
import logging
import os
import random
import shutil
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from note_companion.client.models import (
    LocalFileMetadata,
    Preview,
    SavedItem,
    SharedFile,
    UploadResult,
)

logger = logging.getLogger(__name__)

PENDING_UPLOADS_DIR      = "pending_uploads"
PREVIEWS_DIR             = "previews"
SYNC_QUEUE_FILE          = "sync_queue.json"
DEAD_LETTER_FILE         = "dead_letter.json"
METADATA_FILE            = "metadata.json"
TEXT_CONTENT_FILE        = "content.txt"
BINARY_CONTENT_STEM      = "original"
MAX_SYNC_ATTEMPTS        = 5
TEXT_PREVIEW_LENGTH      = 150
PROCESSED_PREVIEW_LENGTH = 50

_EXTENSION_MIME_TYPES = {
    "jpg":  "image/jpeg",
    "jpeg": "image/jpeg",
    "png":  "image/png",
    "gif":  "image/gif",
    "pdf":  "application/pdf",
    "md":   "text/markdown",
    "txt":  "text/plain",
    "doc":  "application/msword",
    "docx": "application/msword",
}
DEFAULT_MIME_TYPE = "application/octet-stream"


class FileProcessor(Protocol):
    async def process(
        self,
        file: SharedFile,
        token: str,
        on_status: Callable[[str, dict[str, Any] | None], None] | None = None,
    ) -> UploadResult: ...


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def generate_text_preview(text: str, max_length: int = TEXT_PREVIEW_LENGTH) -> str:
    """
    Prefix of text of at most max_length characters.

    Prefers to cut just after the furthest paragraph or sentence break found
    in the second half of the window. The result is always a prefix of text;
    whether it was shortened is ``len(preview) < len(text)``.
    """
    if len(text) <= max_length:
        return text

    start = max_length // 2
    breakpoints = [text.find(sep, start) for sep in ("\n\n", ". ", "? ", "! ")]
    candidates = [bp for bp in breakpoints if bp != -1 and bp < max_length]
    if candidates:
        return text[: max(candidates) + 1]
    return text[:max_length]


def mime_type_for(file_name: str) -> str:
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return _EXTENSION_MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def prepare_file(file: SharedFile, now_ms: int | None = None) -> tuple[str, str]:
    """Return (file_name, mime_type), inventing a name when the share had none."""
    if file.name:
        file_name = file.name
    else:
        ms = now_ms if now_ms is not None else int(time.time() * 1000)
        if file.is_text:
            ext = "txt"
        elif file.uri is not None and file.uri.suffix:
            ext = file.uri.suffix.lstrip(".")
        else:
            ext = "bin"
        file_name = f"shared-{ms}.{ext}"

    mime_type = file.mime_type or mime_type_for(file_name)
    return file_name, mime_type


def new_local_id(now_ms: int | None = None) -> str:
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"local-{ms}-{random.randrange(10000)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _write_json_atomic(path: Path, payload: Any) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def _read_id_list(path: Path) -> list[str]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable queue file treated as empty | path=%s error=%s", path, exc)
        return []
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        logger.warning("Malformed queue file treated as empty | path=%s", path)
        return []
    return data


# ---------------------------------------------------------------------------
# LocalQueue
# ---------------------------------------------------------------------------

class LocalQueue:
    """Durable FIFO of shared items waiting to be uploaded."""

    def __init__(
        self,
        root: Path,
        processor: FileProcessor,
        max_attempts: int = MAX_SYNC_ATTEMPTS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._root         = Path(root)
        self._processor    = processor
        self._max_attempts = max_attempts
        self._clock        = clock

        self.pending_dir = self._root / PENDING_UPLOADS_DIR
        self.previews_dir = self._root / PREVIEWS_DIR
        self.pending_dir.mkdir(parents=True, exist_ok=True)
        self.previews_dir.mkdir(parents=True, exist_ok=True)

    @property
    def queue_path(self) -> Path:
        return self.pending_dir / SYNC_QUEUE_FILE

    @property
    def dead_letter_path(self) -> Path:
        return self.pending_dir / DEAD_LETTER_FILE

    # ----------------------------------------------------------------
    # Persistence
    # ----------------------------------------------------------------

    def save_locally(self, file: SharedFile) -> SavedItem:
        """
        Persist a shared item and append it to the sync queue.

        The item directory is assembled under a hidden staging name and
        renamed into place, so a reader never sees a directory without
        its metadata.json.
        """
        if file.text is None and file.uri is None:
            raise ValueError("Shared file has neither text nor a file path")

        local_id = new_local_id()
        while (self.pending_dir / local_id).exists():
            local_id = new_local_id()
        file_name, mime_type = prepare_file(file)
        staging = Path(tempfile.mkdtemp(prefix=f".{local_id}-", dir=self.pending_dir))

        try:
            if file.is_text:
                content_file = TEXT_CONTENT_FILE
                (staging / content_file).write_text(file.text, encoding="utf-8")
            else:
                content_file = f"{BINARY_CONTENT_STEM}{Path(file_name).suffix}"
                shutil.copyfile(file.uri, staging / content_file)

            preview = self.generate_preview(file, local_id)
            metadata = LocalFileMetadata(
                local_id=local_id,
                name=file_name,
                mime_type=mime_type,
                process_type=file.process_type,
                created_at=self._clock(),
                content_file=content_file,
                is_text=file.is_text,
                preview_type=preview.preview_type,
                text_preview=preview.preview_text,
                thumbnail_path=str(preview.thumbnail_path) if preview.thumbnail_path else None,
            )
            self._write_metadata_to(staging, metadata)
            os.replace(staging, self.pending_dir / local_id)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        self.enqueue(local_id)
        logger.info("Saved shared item locally | local_id=%s type=%s", local_id, preview.preview_type)
        return SavedItem(local_id=local_id, preview=preview)

    def enqueue(self, local_id: str) -> None:
        queue = self.pending_ids()
        if local_id not in queue:
            queue.append(local_id)
            _write_json_atomic(self.queue_path, queue)

    def pending_ids(self) -> list[str]:
        return _read_id_list(self.queue_path)

    def dead_letter_ids(self) -> list[str]:
        return _read_id_list(self.dead_letter_path)

    def read_metadata(self, local_id: str) -> LocalFileMetadata | None:
        path = self.pending_dir / local_id / METADATA_FILE
        try:
            return LocalFileMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Unreadable metadata | local_id=%s error=%s", local_id, exc)
            return None

    def _write_metadata(self, metadata: LocalFileMetadata) -> None:
        self._write_metadata_to(self.pending_dir / metadata.local_id, metadata)

    @staticmethod
    def _write_metadata_to(item_dir: Path, metadata: LocalFileMetadata) -> None:
        _write_json_atomic(item_dir / METADATA_FILE, metadata.model_dump(mode="json", by_alias=True))

    # ----------------------------------------------------------------
    # Previews
    # ----------------------------------------------------------------

    def generate_preview(self, file: SharedFile, local_id: str) -> Preview:
        if file.is_text:
            text = generate_text_preview(file.text)
            return Preview(
                preview_type="text",
                preview_text=text,
                truncated=len(text) < len(file.text),
            )

        if file.uri is not None and (file.mime_type or "").startswith("image/"):
            suffix = file.uri.suffix or ".jpg"
            thumb = self.previews_dir / f"{local_id}-thumb{suffix}"
            try:
                shutil.copyfile(file.uri, thumb)
                return Preview(preview_type="image", thumbnail_path=thumb)
            except OSError as exc:
                logger.warning("Thumbnail copy failed | local_id=%s error=%s", local_id, exc)

        return Preview(preview_type="other", preview_text=file.name or "File")

    # ----------------------------------------------------------------
    # Draining
    # ----------------------------------------------------------------

    async def drain_one(self, token: str) -> bool:
        """
        Process the head of the queue once.

        Returns True while items remain queued.
        """
        queue = self.pending_ids()
        if not queue:
            return False

        local_id = queue[0]
        item_dir = self.pending_dir / local_id
        if not item_dir.is_dir():
            logger.warning("Queued item missing on disk, dropping | local_id=%s", local_id)
            return self._drop_head(queue)

        metadata = self.read_metadata(local_id)
        if metadata is None:
            return self._drop_head(queue)
        if metadata.status == "completed":
            return self._drop_head(queue)

        content_path = item_dir / metadata.content_file
        if not content_path.is_file():
            metadata.status = "error"
            metadata.error = "Local content file missing"
            self._write_metadata(metadata)
            logger.error("Local content file missing | local_id=%s", local_id)
            return self._drop_head(queue)

        def on_status(status: str, details: dict[str, Any] | None = None) -> None:
            if status in ("processing", "completed", "error"):
                metadata.status = status
            if details and details.get("fileId") is not None:
                metadata.server_file_id = str(details["fileId"])

        metadata.last_attempt = self._clock()
        try:
            shared = SharedFile(
                uri=None if metadata.is_text else content_path,
                mime_type=metadata.mime_type,
                name=metadata.name,
                text=content_path.read_text(encoding="utf-8") if metadata.is_text else None,
                process_type=metadata.process_type,
            )
            result = await self._processor.process(shared, token, on_status=on_status)
        except Exception as exc:
            logger.exception("Sync attempt raised | local_id=%s", local_id)
            result = UploadResult.failure(str(exc) or type(exc).__name__)

        if result.status == "completed":
            metadata.status = "completed"
            metadata.error = None
            if result.file_id is not None:
                metadata.server_file_id = result.file_id
            if result.text_content:
                metadata.processed_text_preview = generate_text_preview(
                    result.text_content, PROCESSED_PREVIEW_LENGTH
                )
            metadata.processed_at = self._clock()
            self._write_metadata(metadata)
            logger.info("Synced | local_id=%s file_id=%s", local_id, metadata.server_file_id)
            return self._drop_head(queue)

        if result.status == "error":
            metadata.status = "error"
            metadata.error = result.error or "Unknown processing error"
            metadata.attempts += 1
            if metadata.attempts >= self._max_attempts:
                metadata.dead_lettered = True
                self._write_metadata(metadata)
                self._dead_letter(local_id)
                logger.error(
                    "Sync gave up | local_id=%s attempts=%s error=%s",
                    local_id, metadata.attempts, metadata.error,
                )
                return self._drop_head(queue)

            self._write_metadata(metadata)
            queue.append(queue.pop(0))
            _write_json_atomic(self.queue_path, queue)
            logger.warning(
                "Sync failed, rotated to tail | local_id=%s attempts=%s error=%s",
                local_id, metadata.attempts, metadata.error,
            )
            return True

        # Still processing server-side: leave it at the head for the next pass.
        self._write_metadata(metadata)
        return True

    def _drop_head(self, queue: list[str]) -> bool:
        queue.pop(0)
        _write_json_atomic(self.queue_path, queue)
        return bool(queue)

    def _dead_letter(self, local_id: str) -> None:
        dead = self.dead_letter_ids()
        if local_id not in dead:
            dead.append(local_id)
            _write_json_atomic(self.dead_letter_path, dead)

    def retry_dead_letter(self, local_id: str) -> bool:
        """Move a dead-lettered item back onto the sync queue with a fresh attempt budget."""
        dead = self.dead_letter_ids()
        if local_id not in dead:
            return False

        metadata = self.read_metadata(local_id)
        if metadata is None:
            return False

        dead.remove(local_id)
        _write_json_atomic(self.dead_letter_path, dead)

        metadata.status = "pending"
        metadata.error = None
        metadata.attempts = 0
        metadata.dead_lettered = False
        self._write_metadata(metadata)
        self.enqueue(local_id)
        logger.info("Dead-lettered item requeued | local_id=%s", local_id)
        return True

    # ----------------------------------------------------------------
    # Listing
    # ----------------------------------------------------------------

    def list_local_files(self) -> list[LocalFileMetadata]:
        """All locally saved items, newest first."""
        items = []
        for entry in self.pending_dir.iterdir():
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            metadata = self.read_metadata(entry.name)
            if metadata is not None:
                items.append(metadata)
        items.sort(key=lambda m: m.created_at, reverse=True)
        return items
