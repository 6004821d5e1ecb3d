"""
snaptag - turn photographs into tags and descriptions.

Runs a fallback chain of inference backends (cloud, on-device, local GGUF
models) over a photo or its recognized text, normalizes what they return,
and manages the large local model files those backends need.
"""

from .version import __version__

__all__ = ["__version__"]
