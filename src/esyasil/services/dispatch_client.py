from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .. import codec
from ..config import REMOVE_FURNITURE_PROMPT
from ..errors import GenerationFailure, ImageDecodeError, TransportFailure


logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image"


class FurnitureRemovalClient:
    """
    One best-effort generative call per image.

    `TransportFailure` (provider error, network error, timeout) is retried
    with exponential backoff up to `max_attempts` total attempts.
    `GenerationFailure` (the model answered without an image) is final.
    """

    def __init__(
        self,
        client: Any,
        model: str = DEFAULT_MODEL,
        prompt: str = REMOVE_FURNITURE_PROMPT,
        timeout_seconds: float = 60.0,
        max_attempts: int = 2,
        backoff_seconds: float = 1.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self._model = model
        self._prompt = prompt
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds

    @classmethod
    def from_api_key(cls, api_key: str, **kwargs: Any) -> "FurnitureRemovalClient":
        return cls(genai.Client(api_key=api_key), **kwargs)

    async def remove_furniture(self, encoded_image: str) -> str:
        """Return the edited image as raw base64."""
        try:
            image = codec.decode(encoded_image)
        except ImageDecodeError as exc:
            raise GenerationFailure(str(exc)) from exc

        contents = [
            types.Part.from_text(text=self._prompt),
            types.Part.from_bytes(data=image, mime_type=codec.sniff_mime_type(image)),
        ]

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._generate(contents)
            except TransportFailure as exc:
                if attempt >= self._max_attempts:
                    raise
                delay = self._backoff * 2 ** (attempt - 1)
                logger.warning(
                    "Model call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    self._max_attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue
            return self._extract_image(response)

    async def _generate(self, contents: List[Any]) -> Any:
        try:
            return await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model,
                    contents=contents,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransportFailure(
                f"model call timed out after {self._timeout:g}s"
            ) from exc
        except (genai_errors.APIError, httpx.HTTPError, OSError) as exc:
            raise TransportFailure(str(exc)) from exc

    @staticmethod
    def _extract_image(response: Any) -> str:
        candidates = getattr(response, "candidates", None) or []
        content: Optional[Any] = candidates[0].content if candidates else None
        parts = getattr(content, "parts", None) or []
        for part in parts:
            inline = getattr(part, "inline_data", None)
            if inline is None or not inline.data:
                continue
            if isinstance(inline.data, str):
                return inline.data
            return codec.encode_bytes(inline.data)
        raise GenerationFailure("model returned no image")
