"""Completion client backed by the Google GenAI SDK."""

import logging
from typing import Any

from google import genai
from google.genai import errors, types
import httpx

from enrich_batch.config import FrozenConfig
from enrich_batch.core.exceptions import ConfigurationError
from enrich_batch.core.types import RawResponse

from .base import BatchPayload

log = logging.getLogger(__name__)


def _retry_after(error: errors.APIError) -> float | None:
    """Seconds to wait, from ``retry-after-ms`` or ``retry-after`` headers."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        if headers.get("retry-after-ms"):
            return float(headers["retry-after-ms"]) / 1000.0
        if headers.get("retry-after"):
            return float(headers["retry-after"])
    except (TypeError, ValueError):
        # HTTP-date form or garbage: fall back to computed backoff.
        return None
    return None


def classify_api_error(error: errors.APIError) -> RawResponse:
    """Map SDK errors onto response statuses."""
    code = getattr(error, "code", None)
    message = str(error)
    if code == 429:
        return RawResponse.rate_limited(_retry_after(error), error=message)
    if isinstance(code, int) and (code >= 500 or code == 408):
        return RawResponse.transport_error(message, status_code=code)
    return RawResponse.rejected(message, status_code=code)


class GeminiCompletionClient:
    """Sends payloads to ``client.aio.models.generate_content`` as JSON-mode requests."""

    def __init__(self, *, api_key: str | None = None, model: str, client: Any = None) -> None:
        if client is None:
            if not api_key:
                raise ConfigurationError(
                    "api_key is required for the Gemini client. "
                    "Set ENRICH_API_KEY or pass it programmatically."
                )
            client = genai.Client(api_key=api_key)
        self._client = client
        self.model = model

    @classmethod
    def from_config(cls, config: FrozenConfig) -> "GeminiCompletionClient":
        return cls(api_key=config.api_key, model=config.model)

    async def send(self, payload: BatchPayload) -> RawResponse:
        config = types.GenerateContentConfig(
            system_instruction=payload.system_prompt,
            response_mime_type="application/json",
            max_output_tokens=payload.max_output_tokens,
        )
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=payload.user_prompt,
                config=config,
            )
        except errors.APIError as e:
            classified = classify_api_error(e)
            log.debug("Gemini error %s -> %s", getattr(e, "code", None), classified.status)
            return classified
        except httpx.TransportError as e:
            return RawResponse.transport_error(f"{type(e).__name__}: {e}")

        text = response.text or ""
        if not text:
            log.warning("Gemini returned no text for %d item(s)", len(payload.items))
        return RawResponse.ok(text)
