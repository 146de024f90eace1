"""Watch configuration loading and validation.

Reads per-entity acceptance thresholds and watcher tuning from YAML or JSON.
Non-strict mode falls back to defaults with a warning; strict mode raises
``ConfigValidationError``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_REMOVAL_GRACE = 0
DEFAULT_LOG_LEVEL = "INFO"
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigValidationError(RuntimeError):
    """Raised when strict configuration validation fails."""


@dataclass(frozen=True)
class EntityConfig:
    """Per-entity watcher overrides."""

    min_score: Optional[float] = None
    context_depth: Optional[int] = None
    enabled: bool = True


@dataclass(frozen=True)
class WatchConfig:
    """Top-level watch configuration."""

    min_score: Optional[float] = None
    removal_grace: int = DEFAULT_REMOVAL_GRACE
    log_level: str = DEFAULT_LOG_LEVEL
    entities: dict[str, EntityConfig] = field(default_factory=dict)

    def for_entity(self, name: str) -> EntityConfig:
        return self.entities.get(name, EntityConfig())

    def min_score_for(self, name: str) -> Optional[float]:
        """Entity threshold, falling back to the global one."""
        entity = self.for_entity(name)
        return entity.min_score if entity.min_score is not None else self.min_score


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def resolve_strict_config_validation(default: bool = False) -> bool:
    """Resolve strict validation mode from ``STRICT_CONFIG_VALIDATION`` env."""
    return _env_flag("STRICT_CONFIG_VALIDATION", default=default)


def _complain(msg: str, strict: bool) -> None:
    if strict:
        raise ConfigValidationError(msg)
    logger.warning("%s; using default", msg)


def _parse_score(raw: Any, ctx: str, strict: bool) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        _complain(f"{ctx}.min_score must be a number, got {raw!r}", strict)
        return None
    if not 0.0 <= value <= 1.0:
        _complain(f"{ctx}.min_score must be within [0, 1], got {value}", strict)
        return None
    return value


def _parse_non_negative_int(raw: Any, ctx: str, strict: bool) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        _complain(f"{ctx} must be a non-negative integer, got {raw!r}", strict)
        return None
    return raw


def load_config_payload(config_path: str, strict: bool = False) -> dict[str, Any]:
    """Load a YAML or JSON config file.

    In non-strict mode this returns an empty dict on parse/read failures.
    In strict mode this raises ``ConfigValidationError``.
    """
    path = Path(config_path)
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            payload = json.loads(text)
        else:
            payload = yaml.safe_load(text)
    except FileNotFoundError as exc:
        msg = f"Watch config file not found: {config_path}"
        if strict:
            raise ConfigValidationError(msg) from exc
        logger.warning("%s; continuing with defaults", msg)
        return {}
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"Failed to parse watch config at {config_path}: {exc}"
        if strict:
            raise ConfigValidationError(msg) from exc
        logger.warning("%s; continuing with defaults", msg)
        return {}

    if payload is None:
        msg = f"Watch config file is empty: {config_path}"
        if strict:
            raise ConfigValidationError(msg)
        logger.warning("%s; continuing with defaults", msg)
        return {}

    if not isinstance(payload, dict):
        msg = f"Unexpected watch config payload type: {type(payload).__name__}"
        if strict:
            raise ConfigValidationError(msg)
        logger.warning("%s; continuing with defaults", msg)
        return {}

    return payload


def parse_watch_config(payload: dict[str, Any], strict: bool = False) -> WatchConfig:
    """Validate a raw payload into a ``WatchConfig``."""
    min_score = _parse_score(payload.get("min_score"), "watch", strict)

    grace = _parse_non_negative_int(
        payload.get("removal_grace"), "watch.removal_grace", strict
    )
    if grace is None:
        grace = DEFAULT_REMOVAL_GRACE

    log_level = str(payload.get("log_level", DEFAULT_LOG_LEVEL)).strip().upper()
    if log_level not in _LOG_LEVELS:
        _complain(f"watch.log_level must be one of {sorted(_LOG_LEVELS)}", strict)
        log_level = DEFAULT_LOG_LEVEL

    entities_raw = payload.get("entities", {}) or {}
    if not isinstance(entities_raw, dict):
        _complain("watch.entities must be a mapping", strict)
        entities_raw = {}

    entities: dict[str, EntityConfig] = {}
    for name, raw in entities_raw.items():
        ctx = f"entities.{name}"
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            _complain(f"{ctx} must be a mapping", strict)
            continue
        entities[str(name)] = EntityConfig(
            min_score=_parse_score(raw.get("min_score"), ctx, strict),
            context_depth=_parse_non_negative_int(
                raw.get("context_depth"), f"{ctx}.context_depth", strict
            ),
            enabled=bool(raw.get("enabled", True)),
        )

    return WatchConfig(
        min_score=min_score,
        removal_grace=grace,
        log_level=log_level,
        entities=entities,
    )


def load_watch_config(config_path: str, strict: bool = False) -> WatchConfig:
    """Load and validate watch configuration from YAML/JSON."""
    payload = load_config_payload(config_path, strict=strict)
    config = parse_watch_config(payload, strict=strict)
    logger.info(
        "Loaded watch config from %s (%d entity overrides)",
        config_path,
        len(config.entities),
    )
    return config
