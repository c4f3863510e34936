# src/refinery/repo/schema_types.py
"""
Extract declared type names from the schema sources a repository carries
(OpenAPI, GraphQL, Prisma, protobuf, SQL DDL).

Used by the Project Brief so generated code can reuse existing type names.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger("refinery.repo.schema_types")

OPENAPI_FILES = (
    "openapi.yaml", "openapi.yml", "openapi.json",
    "swagger.yaml", "swagger.yml", "swagger.json",
    "api/openapi.yaml", "api/openapi.yml", "api/openapi.json",
    "docs/openapi.yaml", "docs/openapi.json",
)
GRAPHQL_FILES = ("schema.graphql", "schema.gql", "src/schema.graphql", "graphql/schema.graphql")
PRISMA_FILES = ("prisma/schema.prisma", "schema.prisma")
SQL_DIRS = ("migrations", "db/migrations", "sql", "schema")

_GRAPHQL_RE = re.compile(r"^\s*(?:type|input|enum|interface|union|scalar)\s+([A-Za-z_]\w*)", re.M)
_PRISMA_RE = re.compile(r"^\s*(?:model|enum|type|view)\s+([A-Za-z_]\w*)\s*\{", re.M)
_PROTO_RE = re.compile(r"^\s*(?:message|enum|service)\s+([A-Za-z_]\w*)", re.M)
_SQL_RE = re.compile(
    r"create\s+table\s+(?:if\s+not\s+exists\s+)?[`\"\[]?(?:\w+[`\"\]]?\.[`\"\[]?)?(\w+)",
    re.I,
)


def load_openapi(path: Path) -> Dict[str, Any]:
    """Parse an OpenAPI / Swagger document (JSON or YAML) into a dict."""
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        doc = json.loads(text)
    else:
        doc = yaml.safe_load(text)
    if not isinstance(doc, dict):
        raise ValueError(f"{path}: document root is not a mapping")
    return doc


def openapi_type_names(doc: Dict[str, Any]) -> List[str]:
    schemas = (doc.get("components") or {}).get("schemas") or doc.get("definitions") or {}
    return list(schemas.keys()) if isinstance(schemas, dict) else []


def extract_schema_types(root: Path) -> Tuple[Optional[str], List[str]]:
    """
    Return ``(source_kind, type_names)`` for the first schema family found,
    scanning OpenAPI, GraphQL, Prisma, protobuf, then SQL.
    """
    root = Path(root)

    for rel in OPENAPI_FILES:
        p = root / rel
        if p.is_file():
            try:
                return "openapi", openapi_type_names(load_openapi(p))
            except (OSError, ValueError, yaml.YAMLError) as exc:
                logger.debug("openapi parse failed for %s: %s", p, exc)
                return "openapi", []

    found = _scan_regex(root, GRAPHQL_FILES, _GRAPHQL_RE)
    if found is not None:
        return "graphql", found

    found = _scan_regex(root, PRISMA_FILES, _PRISMA_RE)
    if found is not None:
        return "prisma", found

    protos = sorted(_limited_glob(root, "*.proto"))
    if protos:
        return "protobuf", _dedupe(n for p in protos for n in _PROTO_RE.findall(_read(p)))

    sql_files: List[Path] = []
    for d in SQL_DIRS:
        if (root / d).is_dir():
            sql_files.extend(sorted((root / d).rglob("*.sql")))
    if sql_files:
        return "sql", _dedupe(n for p in sql_files for n in _SQL_RE.findall(_read(p)))

    return None, []


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #
def _scan_regex(root: Path, candidates: Tuple[str, ...], pattern: re.Pattern[str]) -> Optional[List[str]]:
    for rel in candidates:
        p = root / rel
        if p.is_file():
            return _dedupe(pattern.findall(_read(p)))
    return None


def _limited_glob(root: Path, pattern: str, max_depth: int = 3):
    skip = {"node_modules", ".git", "vendor", "target", "dist", "build"}
    stack = [(root, 0)]
    while stack:
        d, depth = stack.pop()
        try:
            entries = list(d.iterdir())
        except OSError:
            continue
        for e in entries:
            if e.is_dir():
                if depth < max_depth and e.name not in skip and not e.name.startswith("."):
                    stack.append((e, depth + 1))
            elif e.match(pattern):
                yield e


def _read(p: Path) -> str:
    try:
        return p.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""


def _dedupe(items) -> List[str]:
    seen: Dict[str, None] = {}
    for it in items:
        seen.setdefault(it, None)
    return list(seen)
