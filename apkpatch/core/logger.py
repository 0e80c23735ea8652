"""
apkpatch/core/logger.py — Run journal.

Every run appends JSON lines to ``<journal_dir>/apkpatch_<UTC date>.jsonl``::

    {"timestamp_iso": "...", "level": "PERF", "phase": "runner",
     "event": "step_completed", "data": {"title": "Decoding APK file"},
     "latency_ms": 5120.4}

WARN and ERROR entries are repeated on stderr through ``apkpatch.journal``.
"""

from __future__ import annotations

import json
import logging
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Optional

_stderr_log = logging.getLogger("apkpatch.journal")
if not _stderr_log.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    _stderr_log.addHandler(_handler)
_stderr_log.setLevel(logging.WARNING)
_stderr_log.propagate = False

_DEFAULT_JOURNAL_DIR = Path("logs")

_journal: Optional["RunJournal"] = None
_journal_lock = threading.Lock()


class RunJournal:
    """
    Append-only JSONL journal; a new file starts when the UTC date changes.

    Obtain it with :func:`get_journal` or :func:`configure_journal`.
    """

    def __init__(self, log_dir: Path = _DEFAULT_JOURNAL_DIR) -> None:
        self._dir = Path(log_dir)
        self._lock = threading.Lock()
        self._fh: Optional[IO[str]] = None
        self._day = ""
        self.info("system", "startup", {
            "python_version": sys.version,
            "platform": platform.platform(),
        })

    @property
    def path(self) -> Path:
        return self._dir / f"apkpatch_{self._day}.jsonl"

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._append("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._append("WARN", phase, event, data)
        _stderr_log.warning("%s/%s %s", phase, event, data or {})

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._append("ERROR", phase, event, data)
        _stderr_log.error("%s/%s %s", phase, event, data or {})

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """Record how long ``event`` took, in milliseconds."""
        self._append("PERF", phase, event, data, latency_ms)

    def flush(self) -> None:
        with self._lock:
            if self._fh is not None and not self._fh.closed:
                self._fh.flush()

    def close(self) -> None:
        """Close the current file; a later entry reopens it."""
        with self._lock:
            if self._fh is not None and not self._fh.closed:
                self._fh.close()
            self._fh = None
            self._day = ""

    def _append(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        now = datetime.now(tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp_iso": now.isoformat(),
            "level": level,
            "phase": phase,
            "event": event,
            "data": data or {},
        }
        if latency_ms is not None:
            entry["latency_ms"] = round(latency_ms, 3)
        line = json.dumps(entry, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            day = now.strftime("%Y-%m-%d")
            if self._fh is None or self._fh.closed or day != self._day:
                self._open(day)
            self._fh.write(line + "\n")

    def _open(self, day: str) -> None:
        # caller holds self._lock
        if self._fh is not None and not self._fh.closed:
            self._fh.close()
        self._day = day
        self._dir.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "a", encoding="utf-8", buffering=1)  # noqa: SIM115


def get_journal(log_dir: Path | str | None = None) -> RunJournal:
    """Return the process-wide journal, creating it on first use."""
    global _journal
    with _journal_lock:
        if _journal is None:
            _journal = RunJournal(Path(log_dir) if log_dir else _DEFAULT_JOURNAL_DIR)
        return _journal


def configure_journal(log_dir: Path | str) -> RunJournal:
    """Point the process-wide journal at ``log_dir``, closing the old one."""
    global _journal
    with _journal_lock:
        if _journal is not None:
            _journal.close()
        _journal = RunJournal(Path(log_dir))
        return _journal
