"""
Content Processing Package
══════════════════════════

Turns one upload record into either extracted text or a generated image.

Modules
───────
  strategies.py  One class per (processType, fileType) family + ExtractionResult
  extractor.py   ContentExtractor: dispatch, key derivation, error boundary
"""

from note_companion.processing.extractor import (
    ContentExtractor,
    ObjectKeyDerivationError,
    derive_object_key,
)
from note_companion.processing.strategies import ExtractionResult, ExtractionStrategy

__all__ = [
    "ContentExtractor",
    "ExtractionResult",
    "ExtractionStrategy",
    "ObjectKeyDerivationError",
    "derive_object_key",
]
