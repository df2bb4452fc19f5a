"""Configuration loader for docpilot.

Loads config from a YAML cascade: config/default.yaml is always loaded,
then environment-specific overrides, then environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from docpilot.core.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Config schema
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    host: str = "localhost"
    port: int = 5432
    dbname: str = "docpilot"
    user: str = "docpilot"
    password: str = "docpilot"

    @property
    def connection_string(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.dbname}"


class LLMConfig(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    fallback_models: list[str] = Field(default_factory=list)
    default_temperature: float = 0.3
    default_max_tokens: int = 4096
    timeout_seconds: int = 120
    provider_retries: int = 2
    provider_backoff_seconds: float = 2.0


class StoreConfig(BaseModel):
    backend: str = "memory"  # "memory" or "postgresql"


class WorkflowConfig(BaseModel):
    max_iterations: int = 10
    max_retries: int = 3
    max_validation_rounds: int = 3
    summarize_keywords: list[str] = Field(
        default_factory=lambda: ["summarize", "summarise", "summary", "digest", "recap"]
    )


class ProgressConfig(BaseModel):
    """Progress heuristic constants.

    These are empirically tuned, not derived. Crossing ``required_score``
    only means "ask the model whether the request is satisfied".
    """
    read_increment: float = 0.5
    write_increment: float = 2.0
    success_bonus: float = 1.0
    repeated_read_penalty: float = 1.0
    required_score: float = 5.0
    read_streak_cap: int = 1
    validation_penalty_base: int = 3


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class EventsConfig(BaseModel):
    jsonl_path: Optional[str] = None
    metrics_path: Optional[str] = None


class AppConfig(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def default_config_dir() -> Path:
    return Path(__file__).parent.parent.parent / "config"


def load_config(
    config_dir: Optional[Path] = None,
    env: Optional[str] = None,
) -> AppConfig:
    """Load application config from YAML cascade.

    Order: default.yaml -> {env}.yaml -> env vars (DATABASE_URL, DOCPILOT_MODEL, ...)
    """
    if config_dir is None:
        config_dir = default_config_dir()

    merged = _load_yaml(config_dir / "default.yaml")

    if env:
        overlay = _load_yaml(config_dir / f"{env}.yaml")
        merged = _deep_merge(merged, overlay)

    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        merged.setdefault("database", {})
        if parsed.hostname:
            merged["database"]["host"] = parsed.hostname
        if parsed.port:
            merged["database"]["port"] = parsed.port
        if parsed.username:
            merged["database"]["user"] = parsed.username
        if parsed.password:
            merged["database"]["password"] = parsed.password
        if parsed.path and len(parsed.path) > 1:
            merged["database"]["dbname"] = parsed.path[1:]

    model = os.getenv("DOCPILOT_MODEL")
    if model:
        merged.setdefault("llm", {})["model"] = model
    base_url = os.getenv("DOCPILOT_BASE_URL")
    if base_url:
        merged.setdefault("llm", {})["base_url"] = base_url

    try:
        return AppConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


# ---------------------------------------------------------------------------
# Prompt loader
# ---------------------------------------------------------------------------

class PromptLoader:
    """Loads prompt templates from config/prompts/ directory.

    Falls back to built-in defaults if the file doesn't exist, so
    prompts can be iterated on without code changes.
    """

    def __init__(self, prompts_dir: Optional[Path] = None):
        if prompts_dir is None:
            prompts_dir = default_config_dir() / "prompts"
        self.prompts_dir = prompts_dir

    def load(self, name: str, default: str = "") -> str:
        """Load a prompt template by filename.

        Args:
            name: Filename within config/prompts/ (e.g. "analysis.txt").
            default: Fallback text if file doesn't exist.

        Returns:
            Prompt text (stripped of leading/trailing whitespace).
        """
        path = self.prompts_dir / name
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
        return default
