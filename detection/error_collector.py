"""
Fault isolation for named extraction probes.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProbeError:
    """A failed probe: its name and the failure message."""

    probe_name: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"probe_name": self.probe_name, "message": self.message}


class ErrorCollector:
    """Runs probes against one candidate and tallies their outcomes.

    A failing probe never interrupts the others: ``run`` swallows the
    exception, records it, and returns ``None`` so dependent probes can
    detect the failure and degrade.

    Example:
        >>> ec = ErrorCollector("message")
        >>> ec.run("answer", lambda: 42)
        42
        >>> ec.run("broken", lambda: 1 / 0) is None
        True
        >>> ec.score()
        0.5
    """

    def __init__(self, context: str):
        self.context = context
        self._run_count = 0
        self._error_count = 0
        self._errors: List[ProbeError] = []

    def run(self, name: str, probe: Callable[[], T]) -> Optional[T]:
        self._run_count += 1
        try:
            return probe()
        except Exception as e:
            self._error_count += 1
            message = str(e) or type(e).__name__
            self._errors.append(ProbeError(probe_name=name, message=message))
            logger.debug(f"[{self.context}] probe '{name}' failed: {message}")
            return None

    def error_count(self) -> int:
        return self._error_count

    def run_count(self) -> int:
        return self._run_count

    def get_error_logs(self) -> List[ProbeError]:
        """Failures in the order the probes ran."""
        return list(self._errors)

    def score(self) -> float:
        """``1 - errors/runs``; a collector that ran nothing scores 1.0."""
        if self._run_count == 0:
            return 1.0
        return 1 - (self._error_count / self._run_count)

    def __repr__(self) -> str:
        return (
            f"ErrorCollector(context={self.context!r}, runs={self._run_count}, "
            f"errors={self._error_count})"
        )
