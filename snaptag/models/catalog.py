"""
Built-in local model families.
"""

from typing import Dict

from ..core.types import ArtifactFile, ArtifactRole, ModelArtifactSpec

TEXT_MODEL = ModelArtifactSpec(
    key="text",
    name="Gemma 2B Instruct",
    directory="Models",
    files=(
        ArtifactFile(
            role=ArtifactRole.LANGUAGE_MODEL,
            file_name="gemma-2b-it-q4_k_m.gguf",
            download_url=(
                "https://huggingface.co/lmstudio-ai/gemma-2b-it-GGUF/resolve/main/"
                "gemma-2b-it-q4_k_m.gguf"
            ),
            expected_size_bytes=1_500_000_000,
        ),
    ),
)

# Files download in the order listed
VISION_MODEL = ModelArtifactSpec(
    key="vision",
    name="MiniCPM-V 4.0",
    directory="VLMModels",
    files=(
        ArtifactFile(
            role=ArtifactRole.VISION_PROJECTOR,
            file_name="mmproj-model-f16.gguf",
            download_url=(
                "https://huggingface.co/openbmb/MiniCPM-V-4-gguf/resolve/main/"
                "mmproj-model-f16.gguf?download=true"
            ),
            expected_size_bytes=959_000_000,
        ),
        ArtifactFile(
            role=ArtifactRole.LANGUAGE_MODEL,
            file_name="ggml-model-Q4_0.gguf",
            download_url=(
                "https://huggingface.co/openbmb/MiniCPM-V-4-gguf/resolve/main/"
                "ggml-model-Q4_0.gguf?download=true"
            ),
            expected_size_bytes=2_080_000_000,
        ),
    ),
)

MODEL_SPECS: Dict[str, ModelArtifactSpec] = {
    TEXT_MODEL.key: TEXT_MODEL,
    VISION_MODEL.key: VISION_MODEL,
}
