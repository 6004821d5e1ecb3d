"""
Cloud backend using the Anthropic Messages API.

Highest-precision backend and the first one tried in automatic mode.
Requires an API key; images are downscaled and sent inline as base64 JPEG.
"""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..analysis.prompts import IMAGE_PROMPT, SYSTEM_PROMPT, text_prompt
from ..analysis.response_parser import parse_model_response
from ..core.config import CLOUD_MODELS
from ..core.errors import ExtractionFailedError, InvalidResponseError
from ..core.types import BackendKind, ExtractedResult
from ..shared.media_utils import MAX_IMAGE_DIMENSION, prepare_jpeg
from .base import InferenceBackend

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 1024
JPEG_QUALITY = 92


class CloudBackend(InferenceBackend):
    """Claude models over HTTPS.

    Attributes:
        model: Model alias ("haiku", "sonnet") or full model identifier
    """

    kind = BackendKind.CLOUD
    name = "Claude API (cloud)"
    supports_text = True
    supports_image = True

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "sonnet",
        base_url: str = "https://api.anthropic.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def model_id(self) -> str:
        return CLOUD_MODELS.get(self.model, self.model)

    async def is_available(self) -> bool:
        """Available when an API key is configured."""
        return bool(self.api_key and self.api_key.strip())

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _require_api_key(self) -> str:
        if not self.api_key or not self.api_key.strip():
            raise ExtractionFailedError("API key is not configured")
        return self.api_key.strip()

    async def _send(self, content: List[Dict[str, Any]]) -> str:
        """POST a single user message and return the first text block."""
        api_key = self._require_api_key()
        payload = {
            "model": self.model_id,
            "max_tokens": MAX_TOKENS,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": content}],
        }
        headers = {
            "content-type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        logger.info(f"Sending request to cloud model {self.model_id}")
        try:
            async with self._client() as client:
                response = await client.post("/v1/messages", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ExtractionFailedError(f"request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Cloud API error {response.status_code}: {response.text[:300]}")
            if response.status_code == 401:
                raise ExtractionFailedError("invalid API key")
            if response.status_code == 429:
                raise ExtractionFailedError("rate limited, retry later")
            raise ExtractionFailedError(f"API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError("Cloud API returned non-JSON body") from e

        for block in data.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                logger.debug(f"Cloud response: {block['text'][:300]}")
                return block["text"]
        raise InvalidResponseError("Cloud API response has no text content")

    async def extract_from_text(self, text: str) -> ExtractedResult:
        response = await self._send([{"type": "text", "text": text_prompt(text)}])
        return parse_model_response(response)

    async def extract_from_image(self, image_bytes: bytes) -> ExtractedResult:
        jpeg = prepare_jpeg(image_bytes, max_dimension=MAX_IMAGE_DIMENSION, quality=JPEG_QUALITY)
        if jpeg is None:
            raise ExtractionFailedError("could not encode image")

        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": "image/jpeg",
                    "data": base64.b64encode(jpeg).decode("ascii"),
                },
            },
            {"type": "text", "text": IMAGE_PROMPT},
        ]
        response = await self._send(content)
        return parse_model_response(response)
