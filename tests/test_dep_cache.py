# tests/test_dep_cache.py
"""
DependencyCache: install once per dependency set, link into every tree.

The package manager is replaced by a runner that fabricates a
``node_modules`` directory and counts installs.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

import pytest

from refinery.verify.dep_cache import DependencyCache, DependencyCacheError, cache_key
from refinery.verify.shell import CommandResult


class _FakeInstaller:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.installs: List[List[str]] = []

    def __call__(self, cwd):
        installer = self

        class _Runner:
            def run(self, cmd, *, timeout=None):
                installer.installs.append(list(cmd))
                if not installer.ok:
                    return CommandResult(cmd=list(cmd), returncode=1, stderr="registry down")
                mods = Path(cwd) / "node_modules" / "left-pad"
                mods.mkdir(parents=True)
                (mods / "index.js").write_text("module.exports = 1\n")
                return CommandResult(cmd=list(cmd), returncode=0)

        return _Runner()


def _tree(root: Path, deps: dict) -> Path:
    root.mkdir(parents=True)
    (root / "package.json").write_text(json.dumps({"name": "demo", "dependencies": deps}))
    return root


def test_cache_key_ignores_unrelated_fields():
    a = cache_key({"name": "a", "dependencies": {"x": "1"}})
    b = cache_key({"name": "b", "version": "2", "dependencies": {"x": "1"}})
    c = cache_key({"dependencies": {"x": "2"}})
    assert a == b != c
    assert len(a) == 16


def test_install_once_and_link(tmp_path: Path):
    installer = _FakeInstaller()
    cache = DependencyCache(tmp_path / "cache", runner_factory=installer).open()
    t1 = _tree(tmp_path / "t1", {"left-pad": "1.3.0"})
    t2 = _tree(tmp_path / "t2", {"left-pad": "1.3.0"})

    key1 = cache.prepare(t1)
    key2 = cache.prepare(t2)

    assert key1 == key2
    assert len(installer.installs) == 1
    assert installer.installs[0][0] == "npm"
    for t in (t1, t2):
        assert (t / "node_modules" / "left-pad" / "index.js").is_file()
    assert cache.stats()["total_entries"] == 1


def test_tree_without_manifest(tmp_path: Path):
    cache = DependencyCache(tmp_path / "cache", runner_factory=_FakeInstaller()).open()
    (tmp_path / "t").mkdir()
    assert cache.prepare(tmp_path / "t") is None


def test_failed_install_raises_and_stores_nothing(tmp_path: Path):
    cache = DependencyCache(tmp_path / "cache", runner_factory=_FakeInstaller(ok=False)).open()
    tree = _tree(tmp_path / "t", {"x": "1"})
    with pytest.raises(DependencyCacheError, match="install failed"):
        cache.prepare(tree)
    assert cache.stats()["total_entries"] == 0


def test_use_before_open(tmp_path: Path):
    cache = DependencyCache(tmp_path / "cache")
    with pytest.raises(DependencyCacheError):
        cache.prepare(tmp_path)


def test_clean_keeps_most_recent(tmp_path: Path):
    installer = _FakeInstaller()
    with DependencyCache(tmp_path / "cache", keep=1, runner_factory=installer) as cache:
        cache.prepare(_tree(tmp_path / "a", {"a": "1"}))
        cache.prepare(_tree(tmp_path / "b", {"b": "1"}))
        removed = cache.clean()
        assert len(removed) == 1
        assert cache.stats()["total_entries"] == 1


def test_installed_node_modules_is_left_alone(tmp_path: Path):
    installer = _FakeInstaller()
    cache = DependencyCache(tmp_path / "cache", runner_factory=installer).open()
    tree = _tree(tmp_path / "live", {"left-pad": "1.3.0"})
    own = tree / "node_modules" / "left-pad"
    own.mkdir(parents=True)
    (own / "index.js").write_text("module.exports = 'local'\n")

    assert cache.prepare(tree) is None
    assert not (tree / "node_modules").is_symlink()
    assert (own / "index.js").read_text() == "module.exports = 'local'\n"
    assert installer.installs == []


def test_stale_link_is_replaced(tmp_path: Path):
    cache = DependencyCache(tmp_path / "cache", runner_factory=_FakeInstaller()).open()
    tree = _tree(tmp_path / "t", {"left-pad": "1.3.0"})
    (tree / "node_modules").symlink_to(tmp_path / "gone", target_is_directory=True)

    key = cache.prepare(tree)
    assert (tree / "node_modules").resolve() == cache.entry_path(key).resolve()
