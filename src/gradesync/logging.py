"""JSONL trace logging - an audit trail of grade publishing cycles.

Event types written by the orchestrator and posters:

``publish_requested``
    A requester asked for grades to be published.
``statuses_pending``
    Enrollments were flipped to ``pending``.
``batch_posted`` / ``batch_failed`` / ``batch_unpublishable``
    Outcome of one export batch.
``statuses_expired``
    Pending/publishing enrollments timed out.
``publish_failed``
    Validation or generation failed for the whole cycle.

Operational messages go through the standard ``logging`` module instead.
"""

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO


@dataclass
class TraceLogger:
    """Writes publishing events to a JSONL file."""

    output_path: Path
    run_id: str
    _file: TextIO = field(init=False, repr=False)
    _closed: bool = field(init=False, default=False)
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self):
        self.output_path = Path(self.output_path)
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.output_path, "a")

    def log(self, event_type: str, **data: Any) -> None:
        record = {
            "timestamp": time.time(),
            "run_id": self.run_id,
            "type": event_type,
            **data,
        }
        self._write(record)

    def _write(self, record: dict) -> None:
        # Workers and the request path may log concurrently.
        with self._lock:
            if self._closed:
                return
            self._file.write(json.dumps(record, default=str) + "\n")
            self._file.flush()

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._file.close()
                self._closed = True

    def __enter__(self) -> "TraceLogger":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def read_trace(path: Path) -> list[dict]:
    """Load every record of a trace file, skipping blank lines."""
    records = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records
