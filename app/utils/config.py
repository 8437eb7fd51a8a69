"""
Configuration management for Cortex.

Uses pydantic-settings to load configuration from environment variables
and .env files. Watch sources come from a YAML file and/or the
WATCH_SOURCES environment variable (JSON list).
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

import yaml
from loguru import logger
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.models.schemas import WatchSource
from app.utils.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Storage Configuration
    data_dir: Path = Path("~/.cortex")
    fingerprint_db: Optional[Path] = None

    # Source Configuration
    sources_file: Path = Path("config/sources.yaml")
    watch_sources: List[WatchSource] = []

    # API Configuration
    api_port: int = 8000
    log_level: str = "INFO"
    api_title: str = "Cortex Ingest API"
    api_version: str = "1.0.0"

    # LLM Configuration
    llm_provider: str = "openrouter"  # openrouter or ollama
    openrouter_api_key: Optional[str] = None
    openrouter_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "google/gemini-2.0-flash-001"
    openrouter_embedding_model: str = "openai/text-embedding-3-small"
    ollama_url: str = "http://127.0.0.1:11434"
    ollama_chat_model: str = "llama3.2"
    ollama_embedding_model: str = "nomic-embed-text"
    llm_timeout: float = 60.0
    max_content_chars: int = 48000

    # Privacy Configuration
    redact_secrets: bool = True
    redact_pii: bool = False
    redact_patterns: str = ""

    # Queue Configuration
    queue_concurrency: int = 2
    queue_max_retries: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 30.0  # seconds
    shutdown_grace_period: float = 30.0  # seconds
    store_error_threshold: int = 3

    # Watch Configuration
    debounce_window: float = 0.1  # seconds
    ready_timeout: float = 5.0  # seconds

    # Feature flags
    scan_on_start: bool = False
    purge_on_unwatch: bool = True
    skip_duplicate_content: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_data_dir(self) -> Path:
        """Expanded data directory."""
        return self.data_dir.expanduser()

    def get_fingerprint_db_path(self) -> Path:
        """Location of the fingerprint database file."""
        if self.fingerprint_db is not None:
            return self.fingerprint_db.expanduser()
        return self.get_data_dir() / "fingerprints.db"

    def get_redact_patterns(self) -> list[str]:
        """Parse extra redact patterns into list."""
        return [p.strip() for p in self.redact_patterns.split(',') if p.strip()]

    def get_watch_sources(self) -> list[WatchSource]:
        """Sources from the YAML file followed by those from the environment."""
        sources = load_watch_sources(self.sources_file.expanduser())
        known = {source.id for source in sources}
        for source in self.watch_sources:
            if source.id in known:
                logger.warning(f"Source '{source.id}' defined twice, keeping the file entry")
                continue
            sources.append(source)
            known.add(source.id)
        return sources


def load_watch_sources(path: Path) -> list[WatchSource]:
    """
    Load watch sources from a YAML file.

    Accepts either a bare list of sources or a mapping with a ``sources`` key.
    A missing file yields an empty list.

    Args:
        path: YAML file location

    Returns:
        Validated watch sources

    Raises:
        ConfigError: if the file cannot be parsed or an entry is invalid
    """
    if not path.exists():
        logger.debug(f"Sources file not found: {path}")
        return []

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML sources file: {exc}") from exc

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("sources", [])
    if not isinstance(data, list):
        raise ConfigError("'sources' must be a list")

    sources: list[WatchSource] = []
    seen: set[str] = set()
    for index, raw in enumerate(data):
        source = _parse_source(raw, index=index, config_path=path)
        if source.id in seen:
            raise ConfigError(f"sources[{index}].id '{source.id}' is not unique")
        seen.add(source.id)
        sources.append(source)

    logger.info(f"Loaded {len(sources)} watch sources from {path}")
    return sources


def _parse_source(raw: Any, *, index: int, config_path: Path) -> WatchSource:
    if not isinstance(raw, dict):
        raise ConfigError(f"sources[{index}] must be a mapping")

    try:
        source = WatchSource.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"sources[{index}] is invalid: {exc}") from exc

    if not source.path.is_absolute():
        # Relative roots are resolved against the file that declares them
        source = source.model_copy(update={"path": (config_path.parent / source.path).resolve()})
    return source


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
