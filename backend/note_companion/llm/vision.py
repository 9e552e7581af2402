"""
AI provider adapters used by the extraction strategies.

  VisionOcrModel  — image URL  → markdown text + token usage
  ImageEditModel  — image file → base64 PNG of a digitized diagram

Both are Protocols so strategies receive them through their constructors and
tests substitute fakes. The concrete classes wrap:

  LangChainVisionOcr   langchain_openai.ChatOpenAI (vision-capable chat model)
  OpenAIImageEditor    openai.AsyncOpenAI().images.edit (gpt-image-1)

Neither adapter catches provider exceptions; the extractor boundary
classifies them (see llm/errors.py).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from openai import AsyncOpenAI

from note_companion.core.config import Settings, settings

logger = logging.getLogger(__name__)

OCR_SYSTEM_PROMPT = "Extract all text comprehensively, preserving formatting."
OCR_USER_PROMPT = (
    "Extract all text from this image. Format the output as markdown, "
    "keeping headings, lists and tables where they appear."
)


@dataclass(frozen=True)
class OcrTranscript:
    """Text returned by the vision model; total_tokens is None when unreported."""
    text:         str
    total_tokens: int | None = None


class VisionOcrModel(Protocol):
    async def transcribe(self, image_url: str) -> OcrTranscript: ...


class ImageEditModel(Protocol):
    async def digitize(self, image_path: Path, mime_type: str, prompt: str) -> str | None: ...


# ---------------------------------------------------------------------------
# OCR: LangChain chat model with image input
# ---------------------------------------------------------------------------

class LangChainVisionOcr:
    """Sends the public image URL to a vision chat model and returns its markdown."""

    def __init__(self, chat_model: BaseChatModel) -> None:
        self._llm = chat_model

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "LangChainVisionOcr":
        from langchain_openai import ChatOpenAI
        return cls(
            ChatOpenAI(
                model=cfg.ocr_model,
                api_key=cfg.openai_api_key,
                temperature=0.0,
            )
        )

    async def transcribe(self, image_url: str) -> OcrTranscript:
        messages = [
            SystemMessage(content=OCR_SYSTEM_PROMPT),
            HumanMessage(content=[
                {"type": "text", "text": OCR_USER_PROMPT},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]),
        ]
        reply = await self._llm.ainvoke(messages)

        text = reply.content if isinstance(reply.content, str) else "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in reply.content
        )
        usage = getattr(reply, "usage_metadata", None) or {}
        total = usage.get("total_tokens")

        logger.debug("OCR reply | chars=%d total_tokens=%s", len(text), total)
        return OcrTranscript(text=text, total_tokens=total)


# ---------------------------------------------------------------------------
# Magic diagram: OpenAI image edit endpoint
# ---------------------------------------------------------------------------

class OpenAIImageEditor:
    """Submits a sketch to the image-edit model; returns the base64 PNG payload."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-image-1") -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "OpenAIImageEditor":
        return cls(AsyncOpenAI(api_key=cfg.openai_api_key), model=cfg.image_model)

    async def digitize(self, image_path: Path, mime_type: str, prompt: str) -> str | None:
        with image_path.open("rb") as fh:
            response = await self._client.images.edit(
                model=self._model,
                image=(image_path.name, fh, mime_type),
                prompt=prompt,
                n=1,
            )
        if not response.data:
            return None
        return response.data[0].b64_json
