# src/refinery/repo/brief.py
"""
Refinery Project Brief
----------------------

Summarises a repository's unwritten conventions so generators and judges
produce repo-native code:

• naming style per role (variables, types, constants, file names)
• import habits (path aliases, share of relative imports)
• module groups ("layers") and the imports observed between them
• domain glossary (most frequent identifiers)
• test framework / style markers
• schema source and declared type names
• generated or vendored directories that must not be edited

A brief is rebuilt for every invocation and never mutated afterwards.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .layers import ROOT_GROUP, allowed_imports, group_edges, module_group
from .naming import KEBAB, NamingStats, case_histogram
from .probe import Capabilities, detect_capabilities
from .schema_types import extract_schema_types
from .symbol_index import SymbolIndex, build_symbol_index, top_identifiers

logger = logging.getLogger("refinery.repo.brief")

DOMAIN_DIRS = ("/domain", "/models", "/entities", "/types", "/schemas")
GLOSSARY_SIZE = 100
NAMING_SAMPLE_FILES = 200

DO_NOT_TOUCH_CANDIDATES = (
    "node_modules", "dist", "build", ".next", ".nuxt", "out", "coverage",
    ".turbo", "src/gen", "src/generated", "prisma/client", "__generated__",
    "vendor", "target",
)

_ALIAS_RE = re.compile(r"['\"]((?:@|~)[A-Za-z0-9_\-]*/)")

TEST_PATTERNS = {
    "pytest": "tests/**/test_*.py",
    "jest": "**/*.test.{ts,tsx,js,jsx}",
    "vitest": "**/*.test.{ts,tsx,js,jsx}",
    "mocha": "test/**/*.{spec,test}.{ts,js}",
    "go-test": "**/*_test.go",
    "cargo-test": "tests/**/*.rs",
    "maven": "src/test/java/**/*Test.java",
    "gradle": "src/test/**/*Test.{java,kt}",
}


# --------------------------------------------------------------------------- #
# Dataclasses
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class NamingConventions:
    variable: str = "camelCase"
    type: str = "PascalCase"
    constant: str = "UPPER_SNAKE_CASE"
    files: str = KEBAB


@dataclass(frozen=True, slots=True)
class ImportHabits:
    uses_aliases: bool = False
    example_alias: Optional[str] = None
    relative_ratio: float = 0.0


@dataclass(frozen=True, slots=True)
class Layer:
    name: str
    allowed_imports: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TestingStyle:
    __test__ = False  # not a pytest class
    framework: str = "auto"
    style: Tuple[str, ...] = ()
    test_pattern: str = ""


@dataclass(frozen=True, slots=True)
class SchemaInfo:
    source: str = "auto"
    types: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProjectBrief:
    naming: NamingConventions = field(default_factory=NamingConventions)
    imports: ImportHabits = field(default_factory=ImportHabits)
    layers: Tuple[Layer, ...] = ()
    glossary: Tuple[str, ...] = ()
    testing: TestingStyle = field(default_factory=TestingStyle)
    schema: SchemaInfo = field(default_factory=SchemaInfo)
    do_not_touch: Tuple[str, ...] = ()
    capabilities: Capabilities = field(default_factory=Capabilities)

    def to_dict(self) -> dict:
        return asdict(self)


# --------------------------------------------------------------------------- #
# Builder
# --------------------------------------------------------------------------- #
def build_project_brief(
    root: str | os.PathLike[str],
    *,
    caps: Capabilities | None = None,
    index: SymbolIndex | None = None,
    glossary_size: int = GLOSSARY_SIZE,
) -> ProjectBrief:
    root_path = Path(root)
    caps = caps if caps is not None else detect_capabilities(root_path)
    index = index if index is not None else build_symbol_index(root_path)

    naming = _infer_naming(root_path, index)
    imports = _infer_import_habits(index)
    layers = _infer_layers(index)
    glossary = tuple(top_identifiers(index, limit=glossary_size, min_len=3, by_dir=DOMAIN_DIRS))
    testing = _infer_testing(root_path, caps, index)
    source, types = extract_schema_types(root_path)
    schema = SchemaInfo(source=source or "auto", types=tuple(types))
    dnt = tuple(d for d in DO_NOT_TOUCH_CANDIDATES if (root_path / d).exists())

    brief = ProjectBrief(
        naming=naming,
        imports=imports,
        layers=layers,
        glossary=glossary,
        testing=testing,
        schema=schema,
        do_not_touch=dnt,
        capabilities=caps,
    )
    logger.debug(
        "brief: %d layers, %d glossary terms, %d schema types",
        len(layers), len(glossary), len(schema.types),
    )
    return brief


def format_brief_for_prompt(brief: ProjectBrief, *, max_glossary: int = 40) -> str:
    """Compact markdown rendering for model prompts."""
    caps = brief.capabilities
    out: List[str] = ["# Project Brief", ""]

    out.append("## Languages & Tooling")
    out.append(f"- Languages: {', '.join(caps.langs) or 'unknown'}")
    for label, values in (
        ("Formatters", caps.formatters),
        ("Linters", caps.linters),
        ("Type-checkers", caps.typecheckers),
        ("Tests", caps.tests),
    ):
        if values:
            out.append(f"- {label}: {', '.join(values)}")
    out.append("")

    n = brief.naming
    out.append("## Naming Conventions")
    out.append(f"- Variables: {n.variable}")
    out.append(f"- Types: {n.type}")
    out.append(f"- Constants: {n.constant}")
    out.append(f"- Files: {n.files}")
    out.append("")

    out.append("## Imports")
    if brief.imports.uses_aliases:
        out.append(f"- Path aliases in use (e.g. `{brief.imports.example_alias}`)")
    out.append(f"- Relative imports: {brief.imports.relative_ratio:.0%}")
    out.append("")

    if brief.layers:
        out.append("## Layers & Boundaries")
        for layer in brief.layers:
            allowed = ", ".join(layer.allowed_imports) or "(none observed)"
            out.append(f"- {layer.name}: imports {allowed}")
        out.append("")

    out.append("## Testing")
    out.append(f"- Framework: {brief.testing.framework}")
    if brief.testing.test_pattern:
        out.append(f"- Pattern: {brief.testing.test_pattern}")
    if brief.testing.style:
        out.append(f"- Style: {', '.join(brief.testing.style)}")
    out.append("")

    if brief.schema.types:
        out.append(f"## Schema Types ({brief.schema.source}) - reuse these names")
        out.append(f"- {', '.join(brief.schema.types[:20])}")
        out.append("")

    if brief.glossary:
        out.append("## Domain Glossary")
        out.append(f"- {', '.join(brief.glossary[:max_glossary])}")
        out.append("")

    if brief.do_not_touch:
        out.append("## Do Not Touch")
        out.append(f"- {', '.join(brief.do_not_touch)}")
        out.append("")

    return "\n".join(out)


# --------------------------------------------------------------------------- #
# Inference helpers
# --------------------------------------------------------------------------- #
def _infer_naming(root: Path, index: SymbolIndex) -> NamingConventions:
    stats = NamingStats()
    for rel in index.files[:NAMING_SAMPLE_FILES]:
        text = _read(root / rel)
        if text:
            stats.observe(text)
    rec = stats.recommend()

    stems = [Path(f).stem.split(".")[0] for f in index.files]
    file_hist = case_histogram(stems)
    files = file_hist.most_common(1)[0][0] if file_hist else KEBAB
    return NamingConventions(
        variable=rec["variable"], type=rec["type"], constant=rec["constant"], files=files
    )


def _infer_import_habits(index: SymbolIndex) -> ImportHabits:
    total = len(index.imports)
    if not total:
        return ImportHabits()
    relative = sum(1 for e in index.imports if e.target.startswith("."))
    example = None
    for e in index.imports:
        m = _ALIAS_RE.match(f"'{e.target}'")
        if m:
            example = m.group(1)
            break
    return ImportHabits(
        uses_aliases=example is not None,
        example_alias=example,
        relative_ratio=relative / total,
    )


def _infer_layers(index: SymbolIndex) -> Tuple[Layer, ...]:
    groups = sorted({module_group(f) for f in index.files} - {ROOT_GROUP})
    if not groups:
        return ()
    counts = group_edges(index.imports, known_groups=set(groups), relative_only=False)
    allowed = allowed_imports(counts)
    return tuple(
        Layer(name=g, allowed_imports=tuple(a for a in allowed.get(g, ()) if a in groups))
        for g in groups
    )


def _infer_testing(root: Path, caps: Capabilities, index: SymbolIndex) -> TestingStyle:
    if not caps.tests:
        return TestingStyle()
    framework = caps.tests[0]
    samples = [f for f in index.files if _looks_like_test(f)][:20]
    markers: Dict[str, None] = {}
    for rel in samples:
        text = _read(root / rel)
        if "@pytest.fixture" in text or "beforeEach(" in text or "t.Cleanup(" in text:
            markers.setdefault("fixtures", None)
        if "@pytest.mark.parametrize" in text or "test.each" in text or "it.each" in text \
                or re.search(r"tests?\s*:?=\s*\[\]struct", text):
            markers.setdefault("table-driven", None)
        if re.search(r"\bdescribe\(", text):
            markers.setdefault("describe/it", None)
        if "monkeypatch" in text or "jest.mock(" in text or "vi.mock(" in text:
            markers.setdefault("mocks", None)
    return TestingStyle(
        framework=framework,
        style=tuple(markers),
        test_pattern=TEST_PATTERNS.get(framework, ""),
    )


def _looks_like_test(path: str) -> bool:
    name = path.rsplit("/", 1)[-1]
    return (
        name.startswith("test_")
        or name.endswith("_test.go")
        or ".test." in name
        or ".spec." in name
        or "/tests/" in "/" + path
    )


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return ""


def recommended_styles(brief: ProjectBrief) -> Sequence[str]:
    """Distinct casing styles the brief recommends, across roles."""
    n = brief.naming
    return tuple(dict.fromkeys((n.variable, n.type, n.constant)))
