"""Client configuration loading helpers."""

from __future__ import annotations

import json
from pathlib import Path

import tomllib

from pydantic import BaseModel, ValidationError, field_validator

CONFIG_FILE = Path.home() / ".config" / "viewray" / "config.toml"

DEFAULT_ADDRESS = "ws://apply.viewray.com:4645"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class AppConfig(BaseModel):
    """Shape of the client configuration file.

    Timeouts default to ``None``: a connect or fetch waits until the server
    answers unless a bound is configured.
    """

    address: str = DEFAULT_ADDRESS
    connect_timeout: float | None = None
    fetch_timeout: float | None = None
    log_level: str = "WARNING"

    @field_validator("connect_timeout", "fetch_timeout")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level '{value}'")
        return level

    def with_overrides(self, **updates: object) -> AppConfig:
        """Return a validated copy with the non-``None`` values applied."""

        values = self.model_dump()
        values.update({key: value for key, value in updates.items() if value is not None})
        return AppConfig(**values)


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    try:
        return AppConfig(**data)
    except ValidationError:
        return AppConfig()


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"address = {json.dumps(config.address)}",
        f"log_level = {json.dumps(config.log_level)}",
    ]
    if config.connect_timeout is not None:
        lines.append(f"connect_timeout = {config.connect_timeout}")
    if config.fetch_timeout is not None:
        lines.append(f"fetch_timeout = {config.fetch_timeout}")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    address = raw.get("address")
    if isinstance(address, str):
        data["address"] = address
    log_level = raw.get("log_level")
    if isinstance(log_level, str):
        data["log_level"] = log_level
    for key in ("connect_timeout", "fetch_timeout"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            data[key] = float(value)
    return data


__all__ = ["AppConfig", "CONFIG_FILE", "DEFAULT_ADDRESS", "load_config", "save_config"]
