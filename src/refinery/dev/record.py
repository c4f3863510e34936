# src/refinery/dev/record.py

"""
Refinery RunRecord
------------------
Thread-safe, append-only persistence of refinement-run history.

Each run keeps an ordered list of state snapshots plus per-iteration
details (verdicts, patch summaries).  Writes go to a temp file and are
swapped in with ``os.replace``, so a crash never leaves half a record.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from datetime import datetime, UTC
from typing import Dict, List, Optional


class RunRecordError(Exception):
    """Custom error for run record issues."""


class RunRecord:
    def __init__(self, record_file: str | os.PathLike[str]):
        self.record_file = os.fspath(record_file)
        self._lock = threading.RLock()
        self._records: List[Dict] = []
        self._idmap: Dict[str, Dict] = {}
        self._load()

    # ------------------------------------------------------------------ #
    # Public API – mutators
    # ------------------------------------------------------------------ #
    def save(self, run_id: str, state: str, extra: dict | None = None) -> None:
        """Append a state snapshot for *run_id* (created on first use)."""
        if not run_id:
            raise RunRecordError("run_id required")
        with self._lock:
            record = self._find_or_create(run_id)
            record["history"].append({
                "state": state,
                "timestamp": self._now(),
                "extra": copy.deepcopy(extra) if extra else {},
            })
            self._persist()

    def append_iteration(self, run_id: str, iteration: dict) -> None:
        with self._lock:
            record = self._idmap.get(run_id)
            if record is None:
                raise RunRecordError(f"No record for run id={run_id}")
            record.setdefault("iterations", []).append(
                {"timestamp": self._now(), **copy.deepcopy(iteration)}
            )
            self._persist()

    # ------------------------------------------------------------------ #
    # Public API – read-only
    # ------------------------------------------------------------------ #
    def load(self) -> List[Dict]:
        with self._lock:
            return copy.deepcopy(self._records)

    def get(self, run_id: str) -> Optional[Dict]:
        with self._lock:
            rec = self._idmap.get(run_id)
            return copy.deepcopy(rec) if rec is not None else None

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _find_or_create(self, run_id: str) -> Dict:
        rec = self._idmap.get(run_id)
        if rec is None:
            rec = {"run_id": run_id, "created_at": self._now(), "history": [], "iterations": []}
            self._records.append(rec)
            self._idmap[run_id] = rec
        return rec

    def _persist(self) -> None:
        with self._lock:
            parent = os.path.dirname(self.record_file)
            if parent:
                os.makedirs(parent, exist_ok=True)
            tmp = self.record_file + ".tmp"
            with open(tmp, "w", encoding="utf8") as f:
                json.dump(self._records, f, indent=2)
            os.replace(tmp, self.record_file)

    def _load(self) -> None:
        with self._lock:
            if not os.path.exists(self.record_file):
                self._records = []
                self._idmap = {}
                return
            try:
                with open(self.record_file, "r", encoding="utf8") as f:
                    self._records = json.load(f)
            except json.JSONDecodeError as exc:
                raise RunRecordError(f"{self.record_file}: corrupt record: {exc}") from exc
            self._idmap = {rec["run_id"]: rec for rec in self._records}

    @staticmethod
    def _now():
        return datetime.now(UTC).isoformat()
