"""Structured audit logging for llmrt sessions.

One JSON object per line (JSONL) for every attempted operation, successful
or not:

    {"ts": "...", "session_id": "...", "kind": "write", "target": "out.txt",
     "outcome": "success", "detail": "hash:...,bytes:5,action:created"}

Sinks:
  - AuditLog: appends to a file. Each line goes out in a single os.write()
    on an O_APPEND descriptor, so concurrent writers never interleave.
  - MemoryAuditSink: keeps records in a list (tests, embedding).

A sink that cannot write logs a warning and carries on; auditing never
aborts the operation being recorded.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone


logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"

MAX_TARGET_LENGTH = 500
MAX_DETAIL_LENGTH = 2000


def make_record(session_id: str, kind: str, target: str, success: bool, detail: str = "") -> dict:
    """Build an audit record."""
    return {
        "ts": datetime.now(timezone.utc).isoformat(),
        "session_id": session_id,
        "kind": kind,
        "target": target[:MAX_TARGET_LENGTH],
        "outcome": OUTCOME_SUCCESS if success else OUTCOME_FAILED,
        "detail": detail[:MAX_DETAIL_LENGTH],
    }


class AuditLog:
    """Append-only JSONL audit file."""

    def __init__(self, log_path: str = "audit.log"):
        """Initialize audit logger.

        Args:
            log_path: File to append to. Parent directories are created on
                first write.
        """
        self.log_path = log_path
        self._fd = None
        self._lock = threading.Lock()
        self._event_count = 0

    def _ensure_open(self):
        """Lazily open the log file on first write."""
        if self._fd is None:
            parent = os.path.dirname(os.path.abspath(self.log_path))
            os.makedirs(parent, exist_ok=True)
            self._fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)

    def write(self, record: dict) -> None:
        """Append one record. Failures are logged, never raised."""
        line = (json.dumps(record, separators=(",", ":")) + "\n").encode("utf-8")
        with self._lock:
            try:
                self._ensure_open()
                os.write(self._fd, line)
                self._event_count += 1
            except OSError as e:
                logger.warning("Audit log write failed (%s): %s", self.log_path, e)

    def close(self) -> None:
        with self._lock:
            if self._fd is not None:
                try:
                    os.close(self._fd)
                except OSError as e:
                    logger.warning("Audit log close failed (%s): %s", self.log_path, e)
                self._fd = None

    @property
    def event_count(self) -> int:
        return self._event_count


class MemoryAuditSink:
    """Audit sink that keeps records in memory."""

    def __init__(self):
        self.records: list[dict] = []
        self._lock = threading.Lock()

    def write(self, record: dict) -> None:
        with self._lock:
            self.records.append(dict(record))

    def close(self) -> None:
        pass

    @property
    def event_count(self) -> int:
        return len(self.records)
