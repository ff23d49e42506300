"""JSON-lines log of dispatch calls.

Each line is one finished call: the feature, every key tried with its outcome
and latency, and how the call ended. Health resets get a line of their own.
Writing never fails a dispatch: I/O errors are logged and the line is lost.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ROTATE_AT_BYTES = 10 * 1024 * 1024


@dataclass
class AttemptRecord:
    key_name: str
    outcome: str  # success | rate_limited | fatal
    latency_ms: float


@dataclass
class DispatchRecord:
    """One execute_with_retry call, filled in as it runs."""

    feature: str
    attempts: list[AttemptRecord] = field(default_factory=list)
    outcome: str = "pending"  # success | fatal | exhausted
    error: str = ""

    def add(self, key_name: str, outcome: str, latency_ms: float) -> None:
        self.attempts.append(AttemptRecord(key_name, outcome, round(latency_ms, 2)))

    def finish(self, outcome: str, error: Optional[BaseException] = None) -> None:
        self.outcome = outcome
        if error is not None:
            self.error = type(error).__name__

    def to_dict(self) -> dict:
        data = {
            "feature": self.feature,
            "outcome": self.outcome,
            "attempts": [
                {"keyName": a.key_name, "outcome": a.outcome, "latencyMs": a.latency_ms}
                for a in self.attempts
            ],
        }
        if self.error:
            data["error"] = self.error
        return data


class DispatchLog:
    """Appends dispatch records to `path`; with no path, records are discarded."""

    def __init__(self, path: Optional[Path] = None, rotate_at: int = ROTATE_AT_BYTES):
        self.path = path
        self.rotate_at = rotate_at

    def write(self, record: DispatchRecord) -> None:
        self._append({"type": "dispatch", **record.to_dict()})

    def health_reset(self, key_name: Optional[str] = None) -> None:
        entry = {"type": "reset"}
        if key_name:
            entry["keyName"] = key_name
        self._append(entry)

    def _append(self, entry: dict) -> None:
        if self.path is None:
            return
        line = json.dumps({"ts": datetime.now(timezone.utc).isoformat(timespec="seconds"), **entry})
        try:
            if self.path.is_symlink():
                logger.warning("Dispatch log %s is a symlink; not writing", self.path)
                return
            self._rotate_if_full()
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            logger.warning("Could not write dispatch log %s: %s", self.path, exc)

    def _rotate_if_full(self) -> None:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return
        if size >= self.rotate_at:
            os.replace(self.path, self.path.with_name(self.path.name + ".1"))
