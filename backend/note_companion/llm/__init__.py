"""
AI Provider Package

Thin, injectable adapters over the OpenAI stack plus a typed classification
of the errors it raises.

Public API::

    from note_companion.llm import LangChainVisionOcr, OpenAIImageEditor

    ocr = LangChainVisionOcr.from_settings()
    transcript = await ocr.transcribe(public_url)
"""

from note_companion.llm.errors import ProviderErrorKind, ProviderFailure, classify_provider_error
from note_companion.llm.vision import (
    ImageEditModel,
    LangChainVisionOcr,
    OcrTranscript,
    OpenAIImageEditor,
    VisionOcrModel,
)

__all__ = [
    "ImageEditModel",
    "LangChainVisionOcr",
    "OcrTranscript",
    "OpenAIImageEditor",
    "ProviderErrorKind",
    "ProviderFailure",
    "VisionOcrModel",
    "classify_provider_error",
]
