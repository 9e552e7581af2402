from note_companion.client.local_queue import LocalQueue, generate_text_preview, prepare_file
from note_companion.client.models import LocalFileMetadata, Preview, SavedItem, SharedFile, UploadResult
from note_companion.client.poller import StatusPoller
from note_companion.client.sync import BackgroundSync
from note_companion.client.uploader import UploadClient

__all__ = [
    "BackgroundSync",
    "LocalFileMetadata",
    "LocalQueue",
    "Preview",
    "SavedItem",
    "SharedFile",
    "StatusPoller",
    "UploadClient",
    "UploadResult",
    "generate_text_preview",
    "prepare_file",
]
