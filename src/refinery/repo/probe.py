# src/refinery/repo/probe.py
"""
Refinery Capability Probe
-------------------------

Detects which languages, formatters, linters, type-checkers, test
frameworks, schema sources and package managers a repository uses by
looking for sentinel files.  Nothing is assumed: a tool only appears in
the snapshot when the repository carries evidence for it.

Ambiguous sentinels (``pyproject.toml`` alone says nothing about black or
mypy) are refined by reading the ``[tool.<name>]`` tables and declared
dependencies of ``pyproject.toml`` / ``package.json``.

The probe never raises: an unreadable or missing root yields an empty
snapshot.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import tomllib
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from tabulate import tabulate

logger = logging.getLogger("refinery.repo.probe")

# --------------------------------------------------------------------------- #
# Sentinel tables
# --------------------------------------------------------------------------- #
LANGUAGE_SENTINELS: Dict[str, Sequence[str]] = {
    "typescript": ("tsconfig.json",),
    "javascript": ("package.json",),
    "python": ("pyproject.toml", "setup.py", "setup.cfg", "requirements.txt", "Pipfile"),
    "go": ("go.mod",),
    "rust": ("Cargo.toml",),
    "java": ("pom.xml", "build.gradle"),
    "kotlin": ("build.gradle.kts", "settings.gradle.kts"),
    "csharp": ("*.csproj", "*.sln"),
    "ruby": ("Gemfile",),
    "php": ("composer.json",),
}

FORMATTER_SENTINELS: Dict[str, Sequence[str]] = {
    "prettier": (".prettierrc", ".prettierrc.json", ".prettierrc.js", ".prettierrc.cjs", "prettier.config.js"),
    "black": (".black",),
    "ruff-format": ("ruff.toml", ".ruff.toml"),
    "gofmt": ("go.mod",),
    "rustfmt": ("rustfmt.toml", ".rustfmt.toml", "Cargo.toml"),
    "ktlint": (".editorconfig.ktlint",),
    "spotless": ("spotless.gradle",),
}

LINTER_SENTINELS: Dict[str, Sequence[str]] = {
    "eslint": (".eslintrc", ".eslintrc.json", ".eslintrc.js", ".eslintrc.cjs", "eslint.config.js", "eslint.config.mjs"),
    "ruff": ("ruff.toml", ".ruff.toml"),
    "flake8": (".flake8", "tox.ini"),
    "pylint": (".pylintrc", "pylintrc"),
    "golangci-lint": (".golangci.yml", ".golangci.yaml"),
    "go-vet": ("go.mod",),
    "clippy": ("Cargo.toml",),
    "checkstyle": ("checkstyle.xml",),
}

TYPECHECKER_SENTINELS: Dict[str, Sequence[str]] = {
    "tsc": ("tsconfig.json",),
    "pyright": ("pyrightconfig.json",),
    "mypy": ("mypy.ini", ".mypy.ini"),
    "go-build": ("go.mod",),
    "cargo-check": ("Cargo.toml",),
}

TEST_SENTINELS: Dict[str, Sequence[str]] = {
    "jest": ("jest.config.js", "jest.config.ts", "jest.config.cjs", "jest.config.json"),
    "vitest": ("vitest.config.js", "vitest.config.ts", "vitest.config.mts"),
    "mocha": (".mocharc.json", ".mocharc.js", ".mocharc.yml"),
    "pytest": ("pytest.ini", "conftest.py", "tests/conftest.py"),
    "go-test": ("go.mod",),
    "cargo-test": ("Cargo.toml",),
    "maven": ("pom.xml",),
    "gradle": ("build.gradle", "build.gradle.kts"),
}

SCHEMA_SENTINELS: Dict[str, Sequence[str]] = {
    "openapi": ("openapi.json", "openapi.yaml", "openapi.yml", "swagger.json", "swagger.yaml",
                "api/openapi.yaml", "api/openapi.json"),
    "graphql": ("schema.graphql", "schema.gql", "*.graphql"),
    "prisma": ("prisma/schema.prisma", "schema.prisma"),
    "protobuf": ("*.proto",),
    "sql": ("migrations/", "db/migrations/", "alembic/"),
}

PACKAGE_MANAGER_SENTINELS: Dict[str, Sequence[str]] = {
    "npm": ("package-lock.json",),
    "yarn": ("yarn.lock",),
    "pnpm": ("pnpm-lock.yaml",),
    "pip": ("requirements.txt",),
    "poetry": ("poetry.lock",),
    "uv": ("uv.lock",),
    "cargo": ("Cargo.lock",),
    "go-mod": ("go.sum",),
    "maven": ("pom.xml",),
    "gradle": ("build.gradle", "build.gradle.kts"),
}

# pyproject [tool.<name>] tables / dependency names -> category, tool
_PYPROJECT_TOOLS: Dict[str, Tuple[str, str]] = {
    "black": ("formatters", "black"),
    "ruff": ("linters", "ruff"),
    "mypy": ("typecheckers", "mypy"),
    "pyright": ("typecheckers", "pyright"),
    "pylint": ("linters", "pylint"),
    "pytest": ("tests", "pytest"),
    "flake8": ("linters", "flake8"),
}

_PACKAGE_JSON_TOOLS: Dict[str, Tuple[str, str]] = {
    "typescript": ("typecheckers", "tsc"),
    "prettier": ("formatters", "prettier"),
    "eslint": ("linters", "eslint"),
    "jest": ("tests", "jest"),
    "vitest": ("tests", "vitest"),
    "mocha": ("tests", "mocha"),
    "prisma": ("schemas", "prisma"),
    "@prisma/client": ("schemas", "prisma"),
    "graphql": ("schemas", "graphql"),
}

_GLOB_SKIP = {"node_modules", ".git", "dist", "build", "target", "vendor", ".venv", "venv"}
_GLOB_MAX_DEPTH = 3

CATEGORIES = ("langs", "formatters", "linters", "typecheckers", "tests", "schemas", "package_managers")


# --------------------------------------------------------------------------- #
# Capabilities snapshot
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class Capabilities:
    """Immutable, deduplicated capability sets (first-seen order)."""

    langs: Tuple[str, ...] = ()
    formatters: Tuple[str, ...] = ()
    linters: Tuple[str, ...] = ()
    typecheckers: Tuple[str, ...] = ()
    tests: Tuple[str, ...] = ()
    schemas: Tuple[str, ...] = ()
    package_managers: Tuple[str, ...] = ()

    def has(self, category: str, name: str) -> bool:
        return name in getattr(self, category)

    def is_empty(self) -> bool:
        return not any(getattr(self, c) for c in CATEGORIES)

    def to_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in asdict(self).items()}

    @staticmethod
    def from_dict(obj: Dict[str, Iterable[str]]) -> "Capabilities":
        return Capabilities(**{c: tuple(obj.get(c, ())) for c in CATEGORIES})


@dataclass(slots=True)
class _Collector:
    found: Dict[str, Dict[str, None]] = field(
        default_factory=lambda: {c: {} for c in CATEGORIES}
    )

    def add(self, category: str, name: str) -> None:
        self.found[category].setdefault(name, None)

    def freeze(self) -> Capabilities:
        return Capabilities(**{c: tuple(v) for c, v in self.found.items()})


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #
def detect_capabilities(root: str | os.PathLike[str]) -> Capabilities:
    root_path = Path(root)
    if not root_path.is_dir():
        logger.debug("probe: %s is not a directory", root_path)
        return Capabilities()

    col = _Collector()
    tables = (
        ("langs", LANGUAGE_SENTINELS),
        ("formatters", FORMATTER_SENTINELS),
        ("linters", LINTER_SENTINELS),
        ("typecheckers", TYPECHECKER_SENTINELS),
        ("tests", TEST_SENTINELS),
        ("schemas", SCHEMA_SENTINELS),
        ("package_managers", PACKAGE_MANAGER_SENTINELS),
    )
    try:
        for category, table in tables:
            for name, sentinels in table.items():
                if _has_sentinel(root_path, sentinels):
                    col.add(category, name)
        _enrich_from_pyproject(root_path, col)
        _enrich_from_requirements(root_path, col)
        _enrich_from_package_json(root_path, col)
    except OSError as exc:
        logger.warning("probe: filesystem error under %s: %s", root_path, exc)
        return Capabilities()
    return col.freeze()


def format_capabilities(caps: Capabilities) -> str:
    rows = [(c, ", ".join(getattr(caps, c)) or "-") for c in CATEGORIES]
    return tabulate(rows, headers=("category", "detected"), tablefmt="github")


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #
def _has_sentinel(root: Path, sentinels: Sequence[str]) -> bool:
    for s in sentinels:
        if s.endswith("/"):
            if (root / s.rstrip("/")).is_dir():
                return True
        elif "*" in s:
            if _glob_exists(root, s):
                return True
        elif (root / s).is_file():
            return True
    return False


def _glob_exists(root: Path, pattern: str) -> bool:
    stack = [(root, 0)]
    while stack:
        d, depth = stack.pop()
        try:
            entries = list(os.scandir(d))
        except OSError:
            continue
        for e in entries:
            if e.is_dir(follow_symlinks=False):
                if depth < _GLOB_MAX_DEPTH and e.name not in _GLOB_SKIP and not e.name.startswith("."):
                    stack.append((Path(e.path), depth + 1))
            elif fnmatch.fnmatch(e.name, pattern):
                return True
    return False


def _enrich_from_pyproject(root: Path, col: _Collector) -> None:
    path = root / "pyproject.toml"
    if not path.is_file():
        return
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        logger.debug("probe: unreadable pyproject.toml: %s", exc)
        return

    tool = data.get("tool") or {}
    for name, (category, label) in _PYPROJECT_TOOLS.items():
        if name in tool:
            col.add(category, label)
    if "ruff" in tool and "format" in (tool.get("ruff") or {}):
        col.add("formatters", "ruff-format")
    if "poetry" in tool:
        col.add("package_managers", "poetry")

    deps: List[str] = list((data.get("project") or {}).get("dependencies") or [])
    for extra in ((data.get("project") or {}).get("optional-dependencies") or {}).values():
        deps.extend(extra)
    for group in (data.get("dependency-groups") or {}).values():
        deps.extend(d for d in group if isinstance(d, str))
    _apply_python_deps(deps, col)


def _enrich_from_requirements(root: Path, col: _Collector) -> None:
    for name in ("requirements.txt", "requirements-dev.txt", "dev-requirements.txt"):
        path = root / name
        if path.is_file():
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
            _apply_python_deps([ln for ln in lines if ln.strip() and not ln.startswith("#")], col)


def _apply_python_deps(deps: Iterable[str], col: _Collector) -> None:
    for spec in deps:
        name = spec.strip().split(";")[0]
        for sep in ("[", "=", "<", ">", "~", "!", " "):
            name = name.split(sep)[0]
        name = name.lower()
        if name in _PYPROJECT_TOOLS:
            category, label = _PYPROJECT_TOOLS[name]
            col.add(category, label)


def _enrich_from_package_json(root: Path, col: _Collector) -> None:
    path = root / "package.json"
    if not path.is_file():
        return
    try:
        pkg = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.debug("probe: unreadable package.json: %s", exc)
        return
    if not isinstance(pkg, dict):
        return
    names: Dict[str, None] = {}
    for key in ("dependencies", "devDependencies", "peerDependencies"):
        for dep in (pkg.get(key) or {}):
            names.setdefault(dep, None)
    for dep in names:
        if dep in _PACKAGE_JSON_TOOLS:
            category, label = _PACKAGE_JSON_TOOLS[dep]
            col.add(category, label)
    if "typescript" in names:
        col.add("langs", "typescript")
    if "eslintConfig" in pkg:
        col.add("linters", "eslint")
    if "prettier" in pkg:
        col.add("formatters", "prettier")
    if "jest" in pkg:
        col.add("tests", "jest")
