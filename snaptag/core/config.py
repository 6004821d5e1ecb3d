"""Application settings and persisted user preferences."""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import EnginePreference

logger = logging.getLogger(__name__)

# Cloud model aliases mapped to API model identifiers
CLOUD_MODELS = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every field can be set with a ``SNAPTAG_`` prefixed variable, e.g.
    ``SNAPTAG_ENGINE_PREFERENCE=local``.
    """

    # Engine selection (overridden by the persisted preference if present)
    engine_preference: EnginePreference = EnginePreference.AUTO

    # Cloud backend
    anthropic_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SNAPTAG_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    anthropic_base_url: str = "https://api.anthropic.com"
    cloud_model: str = "sonnet"
    request_timeout: float = 30.0

    # On-device backend (Ollama server)
    ollama_host: str = Field(
        default="http://localhost:11434",
        validation_alias=AliasChoices("SNAPTAG_OLLAMA_HOST", "OLLAMA_HOST"),
    )
    ollama_model: str = "gemma3"

    # Local model storage
    data_dir: Path = Path.home() / ".snaptag"
    storage_margin_bytes: int = 500_000_000
    download_timeout: float = 60.0

    # Local inference
    local_threads: int = 4
    local_gpu_layers: int = 0
    local_timeout: float = 60.0

    # Reverse geocoding of GPS coordinates
    geocoding_enabled: bool = False
    geocoding_url: str = "https://nominatim.openstreetmap.org/reverse"

    model_config = SettingsConfigDict(
        env_prefix="SNAPTAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def models_dir(self) -> Path:
        """Root directory holding one sub-directory per model family."""
        return Path(self.data_dir).expanduser() / "models"

    @property
    def preferences_file(self) -> Path:
        return Path(self.data_dir).expanduser() / "preferences.json"


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()


class PreferenceStore:
    """Persists the user's engine preference in a small JSON file."""

    KEY = "engine_preference"

    def __init__(self, path: Path, default: EnginePreference = EnginePreference.AUTO) -> None:
        self.path = Path(path)
        self.default = default

    def load(self) -> EnginePreference:
        """Return the stored preference, or the default when unset/corrupt."""
        if not self.path.exists():
            return self.default
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read preferences from {self.path}: {e}")
            return self.default
        if self.KEY not in data:
            return self.default
        return EnginePreference.parse(data.get(self.KEY))

    def save(self, preference: EnginePreference) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {}
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                data = {}
        data[self.KEY] = preference.value
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Saved engine preference '{preference.value}' to {self.path}")
