from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .models import Platform, ToolConfig

MIN_POLL_INTERVAL_SEC = 0.75
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    try:
        parsed = int(raw)
    except ValueError:
        return fallback
    return parsed if parsed >= 0 else fallback


def env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    try:
        parsed = float(raw)
    except ValueError:
        return fallback
    return parsed if parsed >= 0 else fallback


def env_bool(name: str, fallback: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return fallback


def env_list(name: str, fallback: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    values = tuple(part.strip() for part in raw.split(",") if part.strip())
    return values or fallback


def detect_platform() -> Platform:
    override = os.getenv("STEMRUNNER_PLATFORM", "").strip().lower()
    if override:
        return Platform(override)
    if sys.platform.startswith("win"):
        return Platform.WINDOWS
    if sys.platform == "darwin":
        return Platform.MACOS
    return Platform.LINUX


@dataclass(frozen=True)
class Settings:
    work_dir: Path
    platform: Platform
    tool: ToolConfig = field(default_factory=ToolConfig)
    poll_interval: float = MIN_POLL_INTERVAL_SEC
    log_tail_lines: int = 20
    isolated_env: bool = False
    env_dir: Path = Path.home() / ".stemrunner_env"
    file_prefix: str = "demucs"
    log_level: str = "INFO"


def load_settings() -> Settings:
    defaults = ToolConfig()
    tool = ToolConfig(
        model_name=os.getenv("STEMRUNNER_MODEL", defaults.model_name).strip() or defaults.model_name,
        stems=env_list("STEMRUNNER_STEMS", defaults.stems),
        output_subfolder=os.getenv("STEMRUNNER_OUTPUT_SUBFOLDER", defaults.output_subfolder).strip()
        or defaults.output_subfolder,
        converter=os.getenv("STEMRUNNER_CONVERTER", defaults.converter).strip() or defaults.converter,
        auto_install=env_bool("STEMRUNNER_AUTO_INSTALL", defaults.auto_install),
    )

    work_dir = Path(os.getenv("STEMRUNNER_WORK_DIR", str(Path.home() / ".stemrunner" / "AI_Stems_Data")))
    env_dir = Path(os.getenv("STEMRUNNER_ENV_DIR", str(Path.home() / ".stemrunner_env")))

    return Settings(
        work_dir=work_dir.expanduser(),
        platform=detect_platform(),
        tool=tool,
        poll_interval=max(MIN_POLL_INTERVAL_SEC, env_float("STEMRUNNER_POLL_INTERVAL", MIN_POLL_INTERVAL_SEC)),
        log_tail_lines=max(1, env_int("STEMRUNNER_LOG_TAIL_LINES", 20)),
        isolated_env=env_bool("STEMRUNNER_ISOLATED_ENV", False),
        env_dir=env_dir.expanduser(),
        log_level=os.getenv("STEMRUNNER_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
