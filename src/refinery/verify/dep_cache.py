# src/refinery/verify/dep_cache.py
"""
Refinery DependencyCache
------------------------

Content-addressed cache of installed ``node_modules`` trees so concurrent
candidate trees do not each run a full package install.

• Key  = sha256 of the manifest's dependency sets, first 16 hex chars.
• Store is write-once per key: the tree is installed in a scratch copy,
  then moved into place with ``os.replace`` while holding an advisory
  ``filelock``.  Readers never see a partial entry.
• The cache directory is injected; nothing lives at module level.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from filelock import FileLock

from refinery.verify.shell import CommandRunner

logger = logging.getLogger("refinery.verify.dep_cache")

ENTRY_PREFIX = "node_modules-"
KEEP_ENTRIES = 10
INSTALL_TIMEOUT_S = 600.0


class DependencyCacheError(RuntimeError):
    """Raised when installing or linking cached dependencies fails."""


@dataclass(slots=True)
class CacheEntry:
    key: str
    size: int
    mtime: float


def cache_key(manifest: Dict[str, Any]) -> str:
    deps = {
        "dependencies": manifest.get("dependencies") or {},
        "devDependencies": manifest.get("devDependencies") or {},
    }
    blob = json.dumps(deps, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]


class DependencyCache:
    def __init__(
        self,
        base_dir: str | os.PathLike[str],
        *,
        keep: int = KEEP_ENTRIES,
        runner_factory: Callable[[Path], CommandRunner] = CommandRunner,
    ):
        self.base_dir = Path(base_dir)
        self.keep = keep
        self._runner_factory = runner_factory
        self._lock: Optional[FileLock] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def open(self) -> "DependencyCache":
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(self.base_dir / ".cache.lock"))
        return self

    def close(self) -> None:
        self._lock = None

    def __enter__(self) -> "DependencyCache":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    def _require_open(self) -> FileLock:
        if self._lock is None:
            raise DependencyCacheError("DependencyCache used before open()")
        return self._lock

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def entry_path(self, key: str) -> Path:
        return self.base_dir / f"{ENTRY_PREFIX}{key}"

    def has(self, manifest: Dict[str, Any]) -> bool:
        return self.entry_path(cache_key(manifest)).is_dir()

    # ------------------------------------------------------------------ #
    # Install / link
    # ------------------------------------------------------------------ #
    def prepare(self, tree: str | os.PathLike[str]) -> Optional[str]:
        """
        Make ``node_modules`` available in *tree*.  Returns the cache key, or
        None when the tree has no ``package.json`` or already holds a real
        ``node_modules`` directory, which is left untouched.
        """
        lock = self._require_open()
        tree_path = Path(tree)
        manifest_path = tree_path / "package.json"
        if not manifest_path.is_file():
            return None
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise DependencyCacheError(f"unreadable package.json: {exc}") from exc

        live = tree_path / "node_modules"
        if live.is_dir() and not live.is_symlink():
            logger.info("dep-cache: %s has its own node_modules; not linking", tree_path)
            return None

        key = cache_key(manifest)
        entry = self.entry_path(key)
        if not entry.is_dir():
            with lock:
                # re-check: another worker may have stored it meanwhile
                if not entry.is_dir():
                    self._install_into_cache(tree_path, entry)
        else:
            logger.info("dep-cache hit %s", key)
        _link(entry, tree_path / "node_modules")
        os.utime(entry, None)
        return key

    def _install_into_cache(self, tree: Path, entry: Path) -> None:
        scratch = Path(tempfile.mkdtemp(prefix="install-", dir=self.base_dir))
        try:
            for name in ("package.json", "package-lock.json", "yarn.lock", "pnpm-lock.yaml", ".npmrc"):
                if (tree / name).is_file():
                    shutil.copy2(tree / name, scratch / name)
            r = self._runner_factory(scratch).run(_install_cmd(scratch), timeout=INSTALL_TIMEOUT_S)
            if not r.ok:
                raise DependencyCacheError(f"dependency install failed: {r.describe_failure()}")
            built = scratch / "node_modules"
            if not built.is_dir():
                built.mkdir()
            os.replace(built, entry)
            logger.info("dep-cache stored %s", entry.name)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #
    def clean(self) -> List[str]:
        """Delete all but the ``keep`` most recently used entries."""
        lock = self._require_open()
        removed: List[str] = []
        with lock:
            entries = sorted(self._entries(), key=lambda p: p.stat().st_mtime, reverse=True)
            for p in entries[self.keep:]:
                shutil.rmtree(p, ignore_errors=True)
                removed.append(p.name[len(ENTRY_PREFIX):])
        return removed

    def stats(self) -> Dict[str, Any]:
        entries = [
            CacheEntry(key=p.name[len(ENTRY_PREFIX):], size=_dir_size(p), mtime=p.stat().st_mtime)
            for p in self._entries()
        ]
        return {
            "total_entries": len(entries),
            "total_size": sum(e.size for e in entries),
            "entries": entries,
        }

    def _entries(self) -> List[Path]:
        if not self.base_dir.is_dir():
            return []
        return [p for p in self.base_dir.iterdir() if p.is_dir() and p.name.startswith(ENTRY_PREFIX)]


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #
def _install_cmd(tree: Path) -> List[str]:
    if (tree / "pnpm-lock.yaml").is_file():
        return ["pnpm", "install", "--frozen-lockfile"]
    if (tree / "yarn.lock").is_file():
        return ["yarn", "install", "--frozen-lockfile"]
    if (tree / "package-lock.json").is_file():
        return ["npm", "ci", "--no-audit", "--no-fund"]
    return ["npm", "install", "--no-audit", "--no-fund"]


def _link(entry: Path, target: Path) -> None:
    # only a stale link or stray file is replaced, never an installed tree
    if target.is_symlink() or target.is_file():
        target.unlink()
    try:
        target.symlink_to(entry, target_is_directory=True)
    except OSError as exc:
        logger.warning("symlink failed (%s); copying %s", exc, entry.name)
        shutil.copytree(entry, target, symlinks=True)


def _dir_size(path: Path) -> int:
    total = 0
    for dirpath, _dirs, files in os.walk(path):
        for f in files:
            try:
                total += os.lstat(os.path.join(dirpath, f)).st_size
            except OSError:
                continue
    return total
