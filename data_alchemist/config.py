from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from alchemist_core.assistant import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT_S,
    ClaudeAssistant,
    HeuristicAssistant,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssistantConfig:
    api_key: str | None
    model: str
    timeout_s: float
    max_tokens: int


@dataclass(frozen=True)
class RuntimeConfig:
    data_dir: Path
    export_dir: Path
    log_level: str


def load_env(dotenv_path: str | Path | None = None) -> None:
    path = Path(dotenv_path) if dotenv_path else None
    if path and path.exists():
        load_dotenv(path)
        return
    load_dotenv()


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def assistant_config() -> AssistantConfig:
    return AssistantConfig(
        api_key=os.getenv("ANTHROPIC_API_KEY", "").strip() or None,
        model=os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL),
        timeout_s=_env_number("ALCHEMIST_LLM_TIMEOUT", DEFAULT_TIMEOUT_S),
        max_tokens=_env_number("ALCHEMIST_LLM_MAX_TOKENS", DEFAULT_MAX_TOKENS, cast=int),
    )


def runtime_config() -> RuntimeConfig:
    data_dir = Path(os.getenv("ALCHEMIST_DATA_DIR", "./data")).expanduser().resolve()
    export_dir = Path(os.getenv("ALCHEMIST_EXPORT_DIR", "./exports")).expanduser().resolve()
    log_level = os.getenv("ALCHEMIST_LOG_LEVEL", "INFO").upper()
    export_dir.mkdir(parents=True, exist_ok=True)
    return RuntimeConfig(data_dir=data_dir, export_dir=export_dir, log_level=log_level)


def build_assistant(cfg: AssistantConfig | None = None) -> HeuristicAssistant:
    """Claude-backed assistant when an API key is configured, heuristics otherwise."""
    cfg = cfg or assistant_config()
    if not cfg.api_key:
        logger.info("ANTHROPIC_API_KEY not set; using heuristic assistant")
        return HeuristicAssistant()
    return ClaudeAssistant(
        api_key=cfg.api_key,
        model=cfg.model,
        timeout_s=cfg.timeout_s,
        max_tokens=cfg.max_tokens,
    )
