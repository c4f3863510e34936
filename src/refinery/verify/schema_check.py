# src/refinery/verify/schema_check.py
"""
Schema Checker – validates the schema sources a repository declares.

• OpenAPI / Swagger: parsed (JSON or YAML), required top-level keys checked,
  every component schema checked against the JSON-Schema meta-schema and
  every local ``$ref`` resolved.
• Prisma: ``prisma validate`` when the CLI is installed in the repo.
• protobuf: ``protoc`` descriptor build when ``protoc`` is on PATH.
• GraphQL: SDL brace balance and at least one type definition.

External validators are best-effort: when the CLI is absent the check is
skipped and logged, not reported as a schema error.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterator, List

import jsonschema
import yaml

from refinery.repo.probe import Capabilities
from refinery.repo.schema_types import GRAPHQL_FILES, OPENAPI_FILES, PRISMA_FILES, load_openapi
from refinery.verify.parsers import tail
from refinery.verify.shell import CommandRunner

logger = logging.getLogger("refinery.verify.schema_check")

_GRAPHQL_DEF_RE = re.compile(r"^\s*(?:type|input|enum|interface|union|scalar|schema)\b", re.M)


def run_schema_checks(
    root: str | os.PathLike[str],
    caps: Capabilities,
    runner: CommandRunner,
    *,
    timeout: float = 180.0,
) -> List[str]:
    root_path = Path(root)
    errors: List[str] = []

    if caps.has("schemas", "openapi"):
        for rel in OPENAPI_FILES:
            if (root_path / rel).is_file():
                errors.extend(check_openapi(root_path / rel, rel))
                break

    if caps.has("schemas", "prisma"):
        prisma = runner.which("prisma")
        schema_rel = next((p for p in PRISMA_FILES if (root_path / p).is_file()), None)
        if prisma and schema_rel:
            r = runner.run([prisma, "validate", "--schema", schema_rel], timeout=timeout)
            if not r.ok:
                errors.append(f"[prisma] {r.describe_failure()}")
                errors.extend(f"[prisma] {ln}" for ln in tail(r.output, 10))
        else:
            logger.info("schema: prisma CLI not installed; skipping validation")

    if caps.has("schemas", "protobuf"):
        protoc = runner.which("protoc")
        if protoc:
            for proto in sorted(root_path.rglob("*.proto")):
                if "node_modules" in proto.parts:
                    continue
                rel = proto.relative_to(root_path).as_posix()
                r = runner.run([protoc, f"--proto_path={root_path}", f"--descriptor_set_out={os.devnull}", rel],
                               timeout=timeout)
                if not r.ok:
                    errors.append(f"[protoc] {rel}: {r.describe_failure()}")
        else:
            logger.info("schema: protoc not on PATH; skipping protobuf validation")

    if caps.has("schemas", "graphql"):
        for rel in GRAPHQL_FILES:
            if (root_path / rel).is_file():
                errors.extend(check_graphql_sdl((root_path / rel).read_text(encoding="utf-8"), rel))
                break

    return errors


# --------------------------------------------------------------------------- #
# OpenAPI
# --------------------------------------------------------------------------- #
def check_openapi(path: Path, rel: str | None = None) -> List[str]:
    label = rel or path.name
    try:
        doc = load_openapi(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        return [f"[openapi] {label}: cannot parse: {exc}"]
    return [f"[openapi] {label}: {msg}" for msg in openapi_problems(doc)]


def openapi_problems(doc: dict) -> List[str]:
    problems: List[str] = []
    if "openapi" not in doc and "swagger" not in doc:
        problems.append("missing 'openapi' / 'swagger' version key")
    info = doc.get("info")
    if not isinstance(info, dict) or "title" not in info or "version" not in info:
        problems.append("'info' must contain 'title' and 'version'")
    if not isinstance(doc.get("paths", {}), dict):
        problems.append("'paths' must be a mapping")

    schemas = (doc.get("components") or {}).get("schemas") or doc.get("definitions") or {}
    if isinstance(schemas, dict):
        for name, schema in schemas.items():
            try:
                jsonschema.Draft7Validator.check_schema(schema)
            except jsonschema.SchemaError as exc:
                problems.append(f"schema '{name}': {exc.message}")

    for ref in _local_refs(doc):
        if _resolve_pointer(doc, ref) is None:
            problems.append(f"unresolved $ref '{ref}'")
    return problems


def _local_refs(node: Any) -> Iterator[str]:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/"):
            yield ref
        for v in node.values():
            yield from _local_refs(v)
    elif isinstance(node, list):
        for v in node:
            yield from _local_refs(v)


def _resolve_pointer(doc: Any, ref: str) -> Any:
    cur = doc
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if not isinstance(cur, dict) or part not in cur:
            return None
        cur = cur[part]
    return cur


# --------------------------------------------------------------------------- #
# GraphQL
# --------------------------------------------------------------------------- #
def check_graphql_sdl(text: str, label: str) -> List[str]:
    stripped = re.sub(r'"""[\s\S]*?"""|"(?:\\.|[^"\\])*"|#[^\n]*', "", text)
    problems: List[str] = []
    depth = 0
    for ch in stripped:
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                break
    if depth != 0:
        problems.append(f"[graphql] {label}: unbalanced braces")
    if not _GRAPHQL_DEF_RE.search(stripped):
        problems.append(f"[graphql] {label}: no type definitions found")
    return problems
