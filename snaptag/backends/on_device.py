"""
On-device backend using a locally running Ollama server.

The model runtime is installed and managed outside snaptag; this backend
only talks to it. Text input only.
"""

import logging
from typing import Any, List, Optional

from ..analysis.prompts import combined_prompt, text_prompt
from ..analysis.response_parser import parse_with_fallback
from ..core.errors import ExtractionFailedError, InvalidResponseError
from ..core.types import BackendKind, ExtractedResult
from .base import InferenceBackend

logger = logging.getLogger(__name__)


def _model_names(response: Any) -> List[str]:
    """Extract model names from an Ollama list() response."""
    # Handle both dict response and object response
    if hasattr(response, "models"):
        models_list = response.models
    else:
        models_list = response.get("models", [])

    names = []
    for m in models_list:
        if hasattr(m, "model"):
            name = m.model
        elif hasattr(m, "name"):
            name = m.name
        else:
            name = m.get("model", m.get("name", ""))
        if name:
            names.append(name)
    return names


def _message_content(response: Any) -> Optional[str]:
    """Extract the assistant message text from an Ollama chat() response."""
    message = response.message if hasattr(response, "message") else response.get("message")
    if message is None:
        return None
    if hasattr(message, "content"):
        return message.content
    return message.get("content")


class OnDeviceBackend(InferenceBackend):
    """Ollama-hosted language model.

    Attributes:
        model: Ollama model name (e.g. "gemma3", "gemma3:4b")
        host: Ollama server URL
    """

    kind = BackendKind.ON_DEVICE
    name = "Ollama (on-device)"
    supports_text = True
    supports_image = False

    def __init__(
        self,
        model: str = "gemma3",
        host: str = "http://localhost:11434",
        client: Any = None,
    ) -> None:
        self.model = model
        self.host = host
        self._client: Any = client

    def _get_client(self) -> Any:
        """Get or create the async Ollama client."""
        if self._client is None:
            try:
                import ollama

                self._client = ollama.AsyncClient(host=self.host)
            except ImportError as e:
                raise ImportError("Ollama not installed. Install with: pip install ollama") from e
        return self._client

    async def is_available(self) -> bool:
        """Available when the server answers and has the configured model."""
        try:
            response = await self._get_client().list()
        except Exception as e:
            logger.debug(f"Ollama not reachable at {self.host}: {e}")
            return False

        wanted = self.model.split(":")[0]
        for name in _model_names(response):
            if name == self.model or name.split(":")[0] == wanted:
                return True
        return False

    async def extract_from_text(self, text: str) -> ExtractedResult:
        # System prompt is sent inside the user turn
        prompt = combined_prompt(text_prompt(text))
        try:
            response = await self._get_client().chat(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
        except ImportError:
            raise
        except Exception as e:
            raise ExtractionFailedError(f"Ollama request failed: {e}") from e

        content = _message_content(response)
        if not content:
            raise InvalidResponseError("Ollama returned an empty message")

        logger.debug(f"Ollama response: {content[:300]}")
        return parse_with_fallback(content)
