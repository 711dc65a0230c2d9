"""Process configuration.

Built once at startup from environment variables (``.env`` is loaded by
``zaytoon.main``) and handed to the components that need it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from zaytoon.core.errors import ConfigError

MB = 1024 * 1024


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling settings applied to every model call."""
    temperature: float = 1.0
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192
    response_mime_type: str = "text/plain"


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings.

    Attributes:
        api_key: Gemini API key.
        model_name: Gemini model used for both chat and vision calls.
        upload_dir: Scratch directory for in-flight image uploads.
        host: Listen address for the bundled uvicorn runner.
        port: Listen port for the bundled uvicorn runner.
        max_upload_bytes: Per-image size cap.
        max_body_bytes: Cap on JSON / urlencoded request bodies.
        generation: Fixed sampling parameters.
    """
    api_key: str
    model_name: str = "gemini-1.5-flash"
    upload_dir: Path = Path("uploads")
    host: str = "0.0.0.0"
    port: int = 3000
    max_upload_bytes: int = 5 * MB
    max_body_bytes: int = 50 * MB
    generation: GenerationParameters = field(default_factory=GenerationParameters)

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the environment.

        Raises:
            ConfigError: If GEMINI_API_KEY is missing or PORT is not an integer.
        """
        api_key = os.environ.get("GEMINI_API_KEY", "")
        if not api_key:
            raise ConfigError("GEMINI_API_KEY is not set in environment variables")

        port = os.environ.get("PORT", "3000")
        try:
            port_number = int(port)
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {port!r}")

        return cls(
            api_key=api_key,
            model_name=os.environ.get("GEMINI_MODEL", "gemini-1.5-flash"),
            upload_dir=Path(os.environ.get("UPLOAD_DIR", "uploads")),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=port_number,
        )
