"""
Runtime configuration, read from the environment (and a .env file if present).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Template ids registered in the SAI Library for each document kind.
DEFAULT_TEMPLATES = {
    "edps": "69132d45057530242d71a7c6",
    "dfmea": "69137dd6861d3932bb6e6a00",
    "dvp": "6913977b057530242d720f2c",
}

DEFAULT_SAI_BASE_URL = "https://sai-library.saiapplications.com/api/templates"


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path("data")
    host: str = "127.0.0.1"
    port: int = 3001
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    sai_api_key: str = ""
    sai_base_url: str = DEFAULT_SAI_BASE_URL
    sai_timeout: Optional[float] = None
    templates: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    ai_provider: str = "sai"
    anthropic_model: str = "claude-haiku-4-5"
    username: str = "stellantis"
    password: str = "stellantis_pass"
    cors_origins: str = "*"

    @property
    def ai_configured(self) -> bool:
        if self.ai_provider == "anthropic":
            return bool(os.environ.get("ANTHROPIC_API_KEY"))
        return bool(self.sai_api_key)


def _optional_float(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    return float(raw)


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from the process environment after loading .env."""
    load_dotenv(env_file)
    env = os.environ
    log_dir = env.get("SMARTDOC_LOG_DIR")
    return Settings(
        data_dir=Path(env.get("SMARTDOC_DATA_DIR", "data")),
        host=env.get("SMARTDOC_HOST", "127.0.0.1"),
        port=int(env.get("SMARTDOC_PORT", env.get("PORT", "3001"))),
        log_level=env.get("SMARTDOC_LOG_LEVEL", "INFO").upper(),
        log_dir=Path(log_dir) if log_dir else None,
        sai_api_key=env.get("SAI_API_KEY", ""),
        sai_base_url=env.get("SAI_BASE_URL", DEFAULT_SAI_BASE_URL).rstrip("/"),
        sai_timeout=_optional_float(env.get("SAI_TIMEOUT")),
        templates={
            "edps": env.get("SAI_TEMPLATE_EDPS", DEFAULT_TEMPLATES["edps"]),
            "dfmea": env.get("SAI_TEMPLATE_DFMEA", DEFAULT_TEMPLATES["dfmea"]),
            "dvp": env.get("SAI_TEMPLATE_DVP", DEFAULT_TEMPLATES["dvp"]),
        },
        ai_provider=env.get("SMARTDOC_AI_PROVIDER", "sai").lower(),
        anthropic_model=env.get("ANTHROPIC_MODEL", "claude-haiku-4-5"),
        username=env.get("SMARTDOC_USERNAME", "stellantis"),
        password=env.get("SMARTDOC_PASSWORD", "stellantis_pass"),
        cors_origins=env.get("SMARTDOC_CORS_ORIGINS", "*"),
    )
