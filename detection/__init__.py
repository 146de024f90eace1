"""
Structural detection engine.

Finder/Parser protocol, ErrorCollector fault isolation and the generic
Watcher that turns host mutations into ADDED/REMOVED events.
"""

from detection.error_collector import ErrorCollector, ProbeError
from detection.models import (
    EntityDescriptor,
    EventKind,
    Match,
    ParseRecord,
    WatchEvent,
    describe_node,
)
from detection.finder import keep_innermost, keep_outermost, run_finder, unique_by_identity
from detection.parser import build_record, failed_record, run_parser
from detection.reporting import DetectionReporter
from detection.watcher import EventStream, Subscription, Watcher, WatcherState
from detection.registry import EntityRegistry

__all__ = [
    # Fault isolation
    "ErrorCollector",
    "ProbeError",
    # Data models
    "EntityDescriptor",
    "EventKind",
    "Match",
    "ParseRecord",
    "WatchEvent",
    "describe_node",
    # Finder protocol
    "keep_innermost",
    "keep_outermost",
    "run_finder",
    "unique_by_identity",
    # Parser protocol
    "build_record",
    "failed_record",
    "run_parser",
    # Watching
    "DetectionReporter",
    "EventStream",
    "Subscription",
    "Watcher",
    "WatcherState",
    "EntityRegistry",
]
