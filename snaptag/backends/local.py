"""
Local backends running GGUF models with llama-cpp-python.

- LocalTextBackend: single-file instruction-tuned language model (Gemma)
- LocalVisionBackend: composite vision model (language model + projector)

Weights are downloaded or imported by a ModelArtifactManager; these backends
only read the resulting paths. Inference is blocking, so it runs in a worker
thread. Requires the "local" extra: pip install snaptag[local]
"""

import asyncio
import base64
import logging
from typing import Any, Callable, Optional

from ..analysis.prompts import IMAGE_PROMPT, SYSTEM_PROMPT, combined_prompt, gemma_chat, text_prompt
from ..analysis.response_parser import parse_model_response, parse_with_fallback
from ..core.errors import ExtractionFailedError, ModelNotLoadedError
from ..core.types import IMAGE_NATIVE_BONUS, ArtifactRole, BackendKind, ExtractedResult
from ..models.artifacts import ModelArtifactManager
from ..shared.media_utils import prepare_jpeg
from .base import InferenceBackend

logger = logging.getLogger(__name__)

MAX_NEW_TOKENS = 512


class _LlamaBackend(InferenceBackend):
    """Shared model loading for llama.cpp backends."""

    CONTEXT_SIZE = 2048

    def __init__(
        self,
        artifacts: ModelArtifactManager,
        n_threads: int = 4,
        n_gpu_layers: int = 0,
        timeout: float = 60.0,
        llama_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.artifacts = artifacts
        self.n_threads = n_threads
        self.n_gpu_layers = n_gpu_layers
        self.timeout = timeout
        self._llama_factory = llama_factory
        self._llm: Any = None
        self._load_lock = asyncio.Lock()

    async def is_available(self) -> bool:
        """Available when every weight file is present on disk."""
        return self.artifacts.is_complete()

    @property
    def is_loaded(self) -> bool:
        return self._llm is not None

    def _get_factory(self) -> Callable[..., Any]:
        if self._llama_factory is None:
            try:
                from llama_cpp import Llama

                self._llama_factory = Llama
            except ImportError as e:
                raise ModelNotLoadedError(
                    "llama-cpp-python not installed. Install with: pip install snaptag[local]"
                ) from e
        return self._llama_factory

    def _build(self) -> Any:
        raise NotImplementedError

    async def load(self) -> None:
        """Load weights into memory; raises ModelNotLoadedError if files are missing."""
        async with self._load_lock:
            if self._llm is not None:
                return
            if not self.artifacts.is_complete():
                raise ModelNotLoadedError(f"{self.artifacts.spec.name} is not downloaded")
            logger.info(f"Loading {self.artifacts.spec.name}")
            try:
                self._llm = await asyncio.to_thread(self._build)
            except ModelNotLoadedError:
                raise
            except Exception as e:
                logger.error(f"Failed to load {self.artifacts.spec.name}: {e}")
                raise ModelNotLoadedError(f"failed to load {self.artifacts.spec.name}: {e}") from e
            logger.info(f"{self.artifacts.spec.name} loaded")

    async def unload(self) -> None:
        llm, self._llm = self._llm, None
        if llm is not None and hasattr(llm, "close"):
            llm.close()
        logger.info(f"{self.artifacts.spec.name} unloaded")

    async def _run(self, func: Callable[[], str]) -> str:
        """Run blocking inference in a worker thread with a timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionFailedError(f"timed out after {self.timeout:.0f}s") from e
        except ExtractionFailedError:
            raise
        except Exception as e:
            raise ExtractionFailedError(str(e)) from e


class LocalTextBackend(_LlamaBackend):
    """Gemma instruction-tuned model for extraction from recognized text."""

    kind = BackendKind.LOCAL_TEXT
    name = "Gemma (local)"
    supports_text = True
    supports_image = False

    def _build(self) -> Any:
        factory = self._get_factory()
        return factory(
            model_path=str(self.artifacts.paths[ArtifactRole.LANGUAGE_MODEL]),
            n_ctx=self.CONTEXT_SIZE,
            n_threads=self.n_threads,
            n_gpu_layers=self.n_gpu_layers,
            verbose=False,
        )

    def _generate(self, prompt: str) -> str:
        output = self._llm(
            prompt,
            max_tokens=MAX_NEW_TOKENS,
            temperature=0.1,
            stop=["<end_of_turn>"],
        )
        return output["choices"][0]["text"]

    async def extract_from_text(self, text: str) -> ExtractedResult:
        if self._llm is None:
            await self.load()

        prompt = gemma_chat(combined_prompt(text_prompt(text)))
        logger.debug(f"Local prompt: {prompt[:200]}")
        response = await self._run(lambda: self._generate(prompt))
        logger.debug(f"Local response: {response[:300]}")
        return parse_with_fallback(response)


class LocalVisionBackend(_LlamaBackend):
    """MiniCPM-V vision model; looks at the image itself."""

    kind = BackendKind.LOCAL_VISION
    name = "MiniCPM-V (local vision)"
    supports_text = False
    supports_image = True

    CONTEXT_SIZE = 4096

    def __init__(
        self,
        artifacts: ModelArtifactManager,
        n_threads: int = 4,
        n_gpu_layers: int = 0,
        timeout: float = 60.0,
        llama_factory: Optional[Callable[..., Any]] = None,
        chat_handler_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        super().__init__(artifacts, n_threads, n_gpu_layers, timeout, llama_factory)
        self._chat_handler_factory = chat_handler_factory

    def _get_chat_handler_factory(self) -> Callable[..., Any]:
        if self._chat_handler_factory is None:
            try:
                from llama_cpp.llama_chat_format import MiniCPMv26ChatHandler

                self._chat_handler_factory = MiniCPMv26ChatHandler
            except ImportError as e:
                raise ModelNotLoadedError(
                    "llama-cpp-python not installed. Install with: pip install snaptag[local]"
                ) from e
        return self._chat_handler_factory

    def _build(self) -> Any:
        handler = self._get_chat_handler_factory()(
            clip_model_path=str(self.artifacts.paths[ArtifactRole.VISION_PROJECTOR]),
            verbose=False,
        )
        return self._get_factory()(
            model_path=str(self.artifacts.paths[ArtifactRole.LANGUAGE_MODEL]),
            chat_handler=handler,
            n_ctx=self.CONTEXT_SIZE,
            n_threads=self.n_threads,
            n_gpu_layers=self.n_gpu_layers,
            verbose=False,
        )

    def _generate(self, data_uri: str) -> str:
        output = self._llm.create_chat_completion(
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": data_uri}},
                        {"type": "text", "text": IMAGE_PROMPT},
                    ],
                },
            ],
            max_tokens=MAX_NEW_TOKENS,
            temperature=0.3,
        )
        return output["choices"][0]["message"]["content"] or ""

    async def extract_from_text(self, text: str) -> ExtractedResult:
        raise ExtractionFailedError(f"{self.name} does not accept text input")

    async def extract_from_image(self, image_bytes: bytes) -> ExtractedResult:
        if self._llm is None:
            await self.load()

        jpeg = prepare_jpeg(image_bytes, quality=80)
        if jpeg is None:
            raise ExtractionFailedError("could not encode image")
        data_uri = "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")

        logger.info("Starting local vision extraction")
        response = await self._run(lambda: self._generate(data_uri))
        logger.debug(f"Vision response: {response[:500]}")

        result = parse_model_response(response)
        if not result.has_valid_data:
            logger.warning("Local vision model returned nothing usable")
            return ExtractedResult.empty()
        return ExtractedResult.from_tags(
            result.tags, result.description, bonus=IMAGE_NATIVE_BONUS
        )
