# src/refinery/cli.py
"""
Refinery command line
=====================

Usage
-----

    refinery probe  [ROOT] [--json]
    refinery index  [ROOT] [--top N]
    refinery brief  [ROOT] [--json]
    refinery run    [ROOT] [--table]            # exit 0 iff compiled
    refinery apply-patch PATCH.json|- [--root ROOT] [--dry]
    refinery refine ROOT "task" [--candidates FILE] [-n N] [--context PATH ...]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from tabulate import tabulate

from refinery.config import ConfigError, RefineryConfig, load_config
from refinery.dev.constraints import infer_allowed_paths
from refinery.dev.orchestrator import RefinementLoop
from refinery.dev.patch import (
    AddOp,
    EditOp,
    PatchApplyError,
    SpliceOp,
    apply_patch,
    summarize_patch,
    validate_fixer_patch,
)
from refinery.repo.brief import build_project_brief, format_brief_for_prompt
from refinery.repo.probe import detect_capabilities, format_capabilities
from refinery.repo.symbol_index import build_symbol_index, top_identifiers
from refinery.verify.dep_cache import DependencyCache
from refinery.verify.pipeline import ExecutionPipeline
from refinery.verify.report import format_report


def _short(text: str, n: int = 50) -> str:
    return text[:n] + ("..." if len(text) > n else "")


# ──────────────────────────────────────────────────────────────────────────────
# Sub-commands
# ──────────────────────────────────────────────────────────────────────────────
def cmd_probe(args, cfg: RefineryConfig) -> int:
    caps = detect_capabilities(args.root)
    print(json.dumps(caps.to_dict(), indent=2) if args.json else format_capabilities(caps))
    return 0


def cmd_index(args, cfg: RefineryConfig) -> int:
    index = build_symbol_index(args.root, cfg.index_options())
    rows = [(name, index.identifiers[name]) for name in top_identifiers(index, limit=args.top)]
    print(f"{len(index.files)} file(s), {len(index.identifiers)} identifier(s), "
          f"{len(index.imports)} import edge(s)\n")
    print(tabulate(rows, headers=("identifier", "count"), tablefmt="github"))
    return 0


def cmd_brief(args, cfg: RefineryConfig) -> int:
    index = build_symbol_index(args.root, cfg.index_options())
    brief = build_project_brief(args.root, index=index)
    print(json.dumps(brief.to_dict(), indent=2) if args.json else format_brief_for_prompt(brief))
    return 0


def cmd_run(args, cfg: RefineryConfig) -> int:
    cache = DependencyCache(cfg.cache_dir).open() if cfg.cache_dir else None
    try:
        report = ExecutionPipeline(options=cfg.pipeline_options(), dep_cache=cache).run(args.root)
    finally:
        if cache is not None:
            cache.close()
    print(format_report(report) if args.table else json.dumps(report.to_dict(), indent=2))
    return 0 if report.compiled else 1


def cmd_apply_patch(args, cfg: RefineryConfig) -> int:
    if args.patch == "-":
        raw = sys.stdin.read()
    else:
        path = Path(args.patch)
        if not path.is_file():
            print(f"Error: Patch file not found: {args.patch}", file=sys.stderr)
            return 1
        raw = path.read_text(encoding="utf-8")

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as exc:
        print(f"Error: Invalid JSON in patch file: {exc}", file=sys.stderr)
        return 1

    parsed = validate_fixer_patch(obj, cfg.patch_limits())
    if not parsed.ok:
        print("Error: Invalid patch format", file=sys.stderr)
        for err in parsed.errors:
            print(f"  - {err}", file=sys.stderr)
        return 1
    patch = parsed.unwrap()

    counts = patch.counts()
    print("Patch validation passed")
    print(f"   Operations: {len(patch.ops)}")
    print(f"   Add: {counts['add']}, Remove: {counts['remove']}, "
          f"Edit: {counts['edit']}, Splice: {counts['splice']}")

    if args.dry:
        print("\nDry run - operations that would be applied:\n")
        for i, op in enumerate(patch.ops, 1):
            print(f"{i}. {op.kind.upper()} {op.path}")
            if isinstance(op, EditOp):
                print(f"   Find: {_short(op.find)}")
                print(f"   Replace: {_short(op.replace)}")
            elif isinstance(op, AddOp):
                print(f"   Content: {len(op.content.encode('utf-8'))} bytes")
            elif isinstance(op, SpliceOp):
                print(f"   Start: {op.start}, Delete: {op.delete_count}, "
                      f"Insert: {len(op.insert.encode('utf-8'))} bytes")
        try:
            rows = [(s["path"], s["added"], s["removed"]) for s in summarize_patch(args.root, patch)]
        except PatchApplyError as exc:
            print(f"\nError: {exc}", file=sys.stderr)
            return 1
        print()
        print(tabulate(rows, headers=("path", "+", "-"), tablefmt="github"))
        print("\nDry run complete - no changes applied")
        return 0

    try:
        touched = apply_patch(args.root, patch)
    except PatchApplyError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"\nApplied to {len(touched)} file(s)")
    return 0


def cmd_refine(args, cfg: RefineryConfig) -> int:
    # imported here so the other commands never need an OpenAI client
    from refinery.llm.roles import LLMCandidateGenerator, LLMFixer, LLMJudge

    candidates = None
    if args.candidates:
        data = json.loads(Path(args.candidates).read_text(encoding="utf-8"))
        candidates = data if isinstance(data, list) else [data]

    if not cfg.allowed_paths:
        cfg.allowed_paths = infer_allowed_paths(args.spec)

    with RefinementLoop(
        args.root,
        judge=LLMJudge(),
        fixer=LLMFixer(),
        generator=LLMCandidateGenerator(args.root, context_paths=args.context),
        config=cfg,
    ) as loop:
        outcome = loop.run(args.spec, candidates, n=args.n)
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.accepted else 1


# ──────────────────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="refinery", description="Repo-aware verification and refinement.")
    p.add_argument("--config", help="path to refinery_config.json")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("probe", help="detect languages and tools")
    sp.add_argument("root", nargs="?", default=".")
    sp.add_argument("--json", action="store_true")
    sp.set_defaults(func=cmd_probe)

    sp = sub.add_parser("index", help="show the symbol index")
    sp.add_argument("root", nargs="?", default=".")
    sp.add_argument("--top", type=int, default=30)
    sp.set_defaults(func=cmd_index)

    sp = sub.add_parser("brief", help="print the project brief")
    sp.add_argument("root", nargs="?", default=".")
    sp.add_argument("--json", action="store_true")
    sp.set_defaults(func=cmd_brief)

    sp = sub.add_parser("run", help="run the verification pipeline")
    sp.add_argument("root", nargs="?", default=".")
    sp.add_argument("--table", action="store_true", help="summary table instead of JSON")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("apply-patch", help="validate and apply a Fixer patch")
    sp.add_argument("patch", help="patch JSON file, or - for stdin")
    sp.add_argument("--root", default=".")
    sp.add_argument("--dry", action="store_true", help="validate and summarise only")
    sp.set_defaults(func=cmd_apply_patch)

    sp = sub.add_parser("refine", help="generate, select and refine a change")
    sp.add_argument("root")
    sp.add_argument("spec", help="task description")
    sp.add_argument("--candidates", help="JSON file with one candidate or a list")
    sp.add_argument("-n", type=int, default=3, help="candidates to generate")
    sp.add_argument("--context", nargs="*", default=[], help="files to show the generator")
    sp.set_defaults(func=cmd_refine)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    return args.func(args, cfg)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
