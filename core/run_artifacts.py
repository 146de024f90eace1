"""Run artifact helpers for detection reporting.

Two artifacts come out of a detection run: the JSONL event log, one line per
ADDED/REMOVED event tagged with the session and replay step, and the JSON run
report summarizing the watcher and reporter counters.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, TextIO


class EventLogWriter:
    """Append watch events to a JSONL log, tagging each with its step.

    Events are anything with a ``to_dict()``; the session ID and step name
    are written ahead of the event's own fields.
    """

    def __init__(self, path: str, session_id: str):
        self.path = path
        self.session_id = session_id
        self.lines_written = 0
        self._file: Optional[TextIO] = None

    def __enter__(self) -> "EventLogWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        self._file = open(self.path, "w", encoding="utf-8")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def write(self, step: str, events: Iterable[Any]) -> int:
        """Write ``events`` under ``step`` and return how many were written.

        Raises:
            RuntimeError: If the writer is not open.
        """
        if self._file is None:
            raise RuntimeError(f"Event log {self.path} is not open")
        count = 0
        for event in events:
            payload = {"session_id": self.session_id, "step": step, **event.to_dict()}
            self._file.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
            count += 1
        self.lines_written += count
        return count


def write_run_report(
    report: dict[str, Any],
    session_id: str,
    output_dir: str = "output/detection_reports",
    label: str | None = None,
) -> str:
    """Write a JSON detection report and return its path.

    ``label`` (typically the entity type) is appended to the file name so
    several watchers in one session do not overwrite each other.
    """
    os.makedirs(output_dir, exist_ok=True)
    payload = dict(report)
    payload.setdefault("session_id", session_id)
    payload.setdefault("timestamp_utc", datetime.now(timezone.utc).isoformat())
    if label:
        payload.setdefault("label", label)
    stem = f"{session_id}.{label}" if label else session_id
    path = os.path.join(output_dir, f"{stem}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)
    return path
