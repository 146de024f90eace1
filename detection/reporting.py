"""
Fire-and-forget reporting of detection outcomes.

Watchers hand every parse and event to a ``DetectionReporter``, which keeps
counters and logs noteworthy outcomes. Repeated identical probe failures are
logged once, so a page that keeps re-rendering a broken structure cannot
flood the log.
"""

import logging
from typing import Any, Dict, Optional, Set, Tuple

from detection.config import LOW_SCORE_LOG_THRESHOLD, MAX_DISTINCT_FAILURES_LOGGED
from detection.models import EventKind, ParseRecord, WatchEvent

logger = logging.getLogger(__name__)


class DetectionReporter:
    """Counters and de-duplicated logging for one registry or watcher."""

    def __init__(self, low_score_threshold: float = LOW_SCORE_LOG_THRESHOLD):
        self.low_score_threshold = low_score_threshold
        self.parses = 0
        self.low_score_parses = 0
        self.probe_failures = 0
        self.suppressed_failures = 0
        self.added = 0
        self.removed = 0
        self.internal_errors = 0
        self._seen_failures: Set[Tuple[str, str, str]] = set()

    def record_parse(self, entity: str, record: ParseRecord) -> None:
        self.parses += 1
        for error in record.errors:
            self.probe_failures += 1
            key = (entity, error.probe_name, error.message)
            if key in self._seen_failures:
                self.suppressed_failures += 1
                continue
            if len(self._seen_failures) >= MAX_DISTINCT_FAILURES_LOGGED:
                self.suppressed_failures += 1
                continue
            self._seen_failures.add(key)
            logger.info(
                "Probe '%s' failed for %s: %s", error.probe_name, entity, error.message
            )

        if record.score < self.low_score_threshold:
            self.low_score_parses += 1
            logger.warning(
                "Low-confidence %s candidate (score=%.2f, %d/%d probes failed)",
                entity,
                record.score,
                len(record.errors),
                record.probe_count,
            )

    def record_event(self, entity: str, event: WatchEvent) -> None:
        if event.kind is EventKind.ADDED:
            self.added += 1
        else:
            self.removed += 1
        logger.debug("%s %s (score=%.2f)", event.kind.value, entity, event.match.score)

    def record_error(self, entity: str, error: Exception, details: Optional[str] = None) -> None:
        """Log an internal failure that was contained instead of propagated."""
        self.internal_errors += 1
        logger.error(
            "Contained failure while watching %s%s: %s",
            entity,
            f" ({details})" if details else "",
            error,
            exc_info=(type(error), error, error.__traceback__),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert counters to a dictionary."""
        return {
            "parses": self.parses,
            "low_score_parses": self.low_score_parses,
            "probe_failures": self.probe_failures,
            "suppressed_failures": self.suppressed_failures,
            "added": self.added,
            "removed": self.removed,
            "internal_errors": self.internal_errors,
        }

    def __str__(self) -> str:
        return (
            f"DetectionReporter(parses={self.parses}, added={self.added}, "
            f"removed={self.removed}, probe_failures={self.probe_failures})"
        )
