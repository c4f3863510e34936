# src/refinery/verify/pipeline.py
"""
Refinery ExecutionPipeline
--------------------------

Runs one working tree through the verification stages, in order:

    formatters → linters → type-checkers → tests → schema → boundaries

Stages are sequential within a tree.  Candidates are evaluated
concurrently, each in its own temporary copy of the repository, so no two
candidates share a working directory.

A cancellation ``threading.Event`` is checked between stages; when set the
run stops with :class:`PipelineCancelled`.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from refinery.dev.candidate import Candidate
from refinery.dev.patch import resolve_in_root
from refinery.repo.probe import Capabilities, detect_capabilities
from refinery.repo.symbol_index import IndexOptions, build_symbol_index
from refinery.verify.adapters.base import StageTimeouts
from refinery.verify.adapters.registry import adapters_for
from refinery.verify.boundaries import check_boundaries
from refinery.verify.dep_cache import DependencyCache, DependencyCacheError
from refinery.verify.report import ExecutionReport
from refinery.verify.schema_check import run_schema_checks
from refinery.verify.shell import CommandRunner

logger = logging.getLogger("refinery.verify.pipeline")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s"))
    logger.addHandler(h)
logger.setLevel(logging.INFO)

# never copied into a candidate tree (node_modules comes from the cache)
COPY_IGNORE = (".git", "node_modules", "__pycache__", ".mypy_cache", ".pytest_cache",
               ".ruff_cache", ".venv", "venv", "target", "dist", "build", ".next", ".turbo")


class PipelineCancelled(Exception):
    """Raised between stages once the cancellation event is set."""


@dataclass(frozen=True, slots=True)
class PipelineOptions:
    write_formatting: bool = False
    timeouts: StageTimeouts = field(default_factory=StageTimeouts)
    index_options: IndexOptions = field(default_factory=IndexOptions)
    max_workers: int = 4


class ExecutionPipeline:
    def __init__(
        self,
        *,
        options: PipelineOptions | None = None,
        dep_cache: DependencyCache | None = None,
        runner_factory: Callable[[Path], CommandRunner] = CommandRunner,
        cancel: threading.Event | None = None,
    ):
        self.options = options or PipelineOptions()
        self.dep_cache = dep_cache
        self._runner_factory = runner_factory
        self.cancel = cancel

    # ------------------------------------------------------------------ #
    def run(self, root: str | os.PathLike[str], caps: Capabilities | None = None) -> ExecutionReport:
        root_path = Path(root)
        caps = caps if caps is not None else detect_capabilities(root_path)
        runner = self._runner_factory(root_path)
        report = ExecutionReport()
        adapters = adapters_for(caps, self.options.timeouts)
        logger.info("pipeline: %s with adapters %s", root_path, [a.name for a in adapters])

        if self.dep_cache is not None and any(a.name == "node" for a in adapters):
            try:
                key = self.dep_cache.prepare(root_path)
                if key:
                    report.append_log(f"dependencies linked from cache {key}")
            except DependencyCacheError as exc:
                logger.warning("pipeline: dependency cache unavailable: %s", exc)
                report.append_log(f"dependency cache: {exc}")

        self._checkpoint("format")
        for a in adapters:
            a.format(runner, caps, report, write=self.options.write_formatting)

        self._checkpoint("lint")
        for a in adapters:
            a.lint(runner, caps, report)

        self._checkpoint("typecheck")
        for a in adapters:
            a.typecheck(runner, caps, report)

        self._checkpoint("test")
        for a in adapters:
            a.test(runner, caps, report)

        self._checkpoint("schema")
        report.schema_errors.extend(
            run_schema_checks(root_path, caps, runner, timeout=self.options.timeouts.tool_s)
        )

        self._checkpoint("boundaries")
        index = build_symbol_index(root_path, self.options.index_options)
        report.boundary_errors.extend(check_boundaries(index))

        logger.info(
            "pipeline: compiled=%s lint=%d type=%d tests=%d/%d schema=%d boundaries=%d",
            report.compiled, len(report.lint_errors), len(report.type_errors),
            report.test.passed, report.test.failed,
            len(report.schema_errors), len(report.boundary_errors),
        )
        return report

    def _checkpoint(self, stage: str) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise PipelineCancelled(f"cancelled before {stage}")

    # ------------------------------------------------------------------ #
    # Candidate evaluation
    # ------------------------------------------------------------------ #
    def evaluate_candidate(
        self,
        root: str | os.PathLike[str],
        candidate: Candidate,
        caps: Capabilities | None = None,
    ) -> ExecutionReport:
        with tempfile.TemporaryDirectory(prefix="refinery-cand-") as tmp:
            tree = materialize_candidate(root, candidate, Path(tmp) / "tree")
            return self.run(tree, caps)

    def evaluate_candidates(
        self,
        root: str | os.PathLike[str],
        candidates: Sequence[Candidate],
        caps: Capabilities | None = None,
    ) -> List[ExecutionReport]:
        """Reports in candidate order; trees are evaluated concurrently."""
        caps = caps if caps is not None else detect_capabilities(root)
        reports: List[Optional[ExecutionReport]] = [None] * len(candidates)
        workers = max(1, min(self.options.max_workers, len(candidates)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.evaluate_candidate, root, cand, caps): i
                for i, cand in enumerate(candidates)
            }
            for future in concurrent.futures.as_completed(futures):
                reports[futures[future]] = future.result()
        return [r for r in reports if r is not None]


# --------------------------------------------------------------------------- #
# Working-tree helpers
# --------------------------------------------------------------------------- #
def materialize_candidate(
    root: str | os.PathLike[str],
    candidate: Candidate,
    dest: str | os.PathLike[str],
) -> Path:
    """Copy *root* to *dest* (skipping caches / VCS) and write the candidate's files."""
    dest_path = Path(dest)
    shutil.copytree(root, dest_path, ignore=shutil.ignore_patterns(*COPY_IGNORE),
                    symlinks=True, dirs_exist_ok=True)
    write_candidate(dest_path, candidate)
    return dest_path


def write_candidate(root: str | os.PathLike[str], candidate: Candidate) -> List[str]:
    written = []
    for f in candidate.all_files():
        target = resolve_in_root(root, f.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f.content, encoding="utf-8")
        written.append(f.path)
    return written
