# src/refinery/audit/llm_call_log.py
"""
Append-only JSONL audit trail of model calls (one line per call).

The directory comes from ``REFINERY_LOG_DIR`` (default ``.refinery_logs``)
and is created on first write.  Files rotate at 50 MB.
"""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from threading import RLock

from filelock import FileLock

_MAX = 50 * 1024 * 1024                   # 50 MB rotate


def log_dir() -> Path:
    return Path(os.getenv("REFINERY_LOG_DIR", ".refinery_logs"))


class LLMCallLogger:
    _inst: "LLMCallLogger | None" = None

    def __new__(cls):
        if cls._inst is None:
            cls._inst = super().__new__(cls)
            cls._inst._init()
        return cls._inst

    def _init(self):
        ts = time.strftime("%Y%m%d-%H%M%S")
        self._root = log_dir()
        self._file = self._root / f"llm-{ts}.jsonl"
        self._lock = RLock()
        self._flock: FileLock | None = None

    @property
    def path(self) -> Path:
        return self._file

    # ------------------------------------------------------------------
    def log(self, rec: dict) -> None:
        line = json.dumps(rec, ensure_ascii=False) + "\n"
        with self._lock:
            if self._flock is None:
                self._root.mkdir(parents=True, exist_ok=True)
                self._flock = FileLock(str(self._file) + ".lock")
            with self._flock:
                with self._file.open("a", encoding="utf-8") as fh:
                    fh.write(line)
                if self._file.stat().st_size > _MAX:
                    ts = time.strftime("%Y%m%d-%H%M%S")
                    self._file.rename(self._file.with_name(f"llm-{ts}-full.jsonl"))

    @classmethod
    def reset(cls) -> None:
        """Forget the singleton (next use re-reads ``REFINERY_LOG_DIR``)."""
        cls._inst = None
