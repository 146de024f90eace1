"""Core shared contracts and utilities."""

from core.structured_logging import (
    batch_scope,
    configure_structured_logging,
    entity_scope,
    get_batch,
    get_entity,
    get_session_id,
    set_session_id,
)
from core.watch_config import (
    ConfigValidationError,
    EntityConfig,
    WatchConfig,
    load_config_payload,
    load_watch_config,
    parse_watch_config,
    resolve_strict_config_validation,
)
from core.run_artifacts import EventLogWriter, write_run_report

__all__ = [
    "batch_scope",
    "configure_structured_logging",
    "entity_scope",
    "get_batch",
    "get_entity",
    "get_session_id",
    "set_session_id",
    "ConfigValidationError",
    "EntityConfig",
    "WatchConfig",
    "load_config_payload",
    "load_watch_config",
    "parse_watch_config",
    "resolve_strict_config_validation",
    "EventLogWriter",
    "write_run_report",
]
