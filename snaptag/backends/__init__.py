"""
Inference backends.

- CloudBackend: Anthropic Messages API (text and image)
- OnDeviceBackend: Ollama server on this machine (text)
- LocalTextBackend: GGUF language model via llama-cpp-python (text)
- LocalVisionBackend: GGUF vision model via llama-cpp-python (image)
"""

from .base import InferenceBackend
from .cloud import CloudBackend
from .local import LocalTextBackend, LocalVisionBackend
from .on_device import OnDeviceBackend

__all__ = [
    "CloudBackend",
    "InferenceBackend",
    "LocalTextBackend",
    "LocalVisionBackend",
    "OnDeviceBackend",
]
