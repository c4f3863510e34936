# tests/test_repo_analysis.py
"""
Repository analysis: Capability Probe, Symbol Index, extraction helpers,
layer grouping and the Project Brief.

Each test lays out a tiny repository under ``tmp_path``; no external tool
is launched.
"""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Dict

import pytest

from refinery.repo.brief import build_project_brief, format_brief_for_prompt, recommended_styles
from refinery.repo.extract import extract_identifiers, extract_imports
from refinery.repo.layers import module_group, resolve_relative
from refinery.repo.naming import detect_case
from refinery.repo.probe import Capabilities, detect_capabilities
from refinery.repo.schema_types import extract_schema_types
from refinery.repo.symbol_index import (
    IndexOptions,
    SymbolIndex,
    build_symbol_index,
    top_identifiers,
)


def _layout(root: Path, files: Dict[str, str]) -> Path:
    for rel, text in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
    return root


# --------------------------------------------------------------------------- #
# Capability Probe
# --------------------------------------------------------------------------- #
def test_empty_repo_has_no_capabilities(tmp_path: Path):
    caps = detect_capabilities(tmp_path)
    assert caps.is_empty()


def test_missing_root_yields_empty_snapshot(tmp_path: Path):
    assert detect_capabilities(tmp_path / "nope").is_empty()


def test_pyproject_tool_tables(tmp_path: Path):
    _layout(tmp_path, {
        "pyproject.toml": (
            "[project]\nname = 'demo'\ndependencies = ['requests']\n"
            "[project.optional-dependencies]\ntest = ['pytest>=8']\n"
            "[tool.black]\nline-length = 100\n"
            "[tool.ruff.format]\nquote-style = 'double'\n"
            "[tool.mypy]\nstrict = true\n"
        ),
    })
    caps = detect_capabilities(tmp_path)
    assert caps.langs == ("python",)
    assert caps.has("formatters", "black")
    assert caps.has("formatters", "ruff-format")
    assert caps.has("linters", "ruff")
    assert caps.has("typecheckers", "mypy")
    assert caps.tests == ("pytest",)


def test_package_json_dependencies(tmp_path: Path):
    _layout(tmp_path, {
        "package.json": json.dumps({"devDependencies": {"jest": "^29", "typescript": "^5"}}),
        "package-lock.json": "{}",
    })
    caps = detect_capabilities(tmp_path)
    assert caps.has("langs", "javascript")
    assert caps.has("langs", "typescript")
    assert caps.has("typecheckers", "tsc")
    assert caps.has("tests", "jest")
    assert caps.package_managers == ("npm",)


def test_capabilities_dict_round_trip():
    caps = Capabilities(langs=("go",), tests=("go-test",))
    assert Capabilities.from_dict(caps.to_dict()) == caps
    assert caps.to_dict()["langs"] == ["go"]


# --------------------------------------------------------------------------- #
# Extraction helpers
# --------------------------------------------------------------------------- #
def test_identifiers_skip_comments_strings_and_short_tokens():
    text = "const userName = 'hello world'; // trailing remark\nfn ab"
    assert extract_identifiers(text) == ["userName"]


def test_imports_first_pattern_per_line():
    js = "import x from './a'\nconst y = require('../b')\n"
    assert [e.target for e in extract_imports(js, "src/c.js")] == ["./a", "../b"]

    py = "from .models import user\nimport os\n"
    assert [e.target for e in extract_imports(py)] == [".models", "os"]

    go = 'import (\n    "fmt"\n    "net/http"\n)\n'
    assert [e.target for e in extract_imports(go)] == ["fmt", "net/http"]


@pytest.mark.parametrize(
    "token, style",
    [
        ("userName", "camelCase"),
        ("UserName", "PascalCase"),
        ("user_name", "snake_case"),
        ("MAX_SIZE", "UPPER_SNAKE_CASE"),
        ("my-file", "kebab-case"),
        ("user", None),
    ],
)
def test_detect_case(token, style):
    assert detect_case(token) == style


def test_module_groups():
    assert module_group("src/api/x.ts") == "api"
    assert module_group("lib/util.py") == "lib"
    assert module_group("main.py") == "."
    assert module_group("src/main.py") == "."
    # resolved import targets may name a directory
    assert module_group("src/domain", target=True) == "domain"
    assert module_group("domain", target=True) == "domain"
    assert module_group("src", target=True) == "."


def test_resolve_relative():
    assert resolve_relative("src/api/x.ts", "../db/y") == "src/db/y"
    assert resolve_relative("src/api/x.py", "..models.user") == "src/models/user"
    assert resolve_relative("src/api/x.ts", "lodash") is None
    assert resolve_relative("x.ts", "../../up") is None


# --------------------------------------------------------------------------- #
# Symbol Index
# --------------------------------------------------------------------------- #
def test_index_skips_excluded_dirs(tmp_path: Path):
    _layout(tmp_path, {
        "src/app.ts": "export function loadUser() { return fetchUser(); }\n",
        "node_modules/lib/index.js": "function vendored() {}\n",
        "README.md": "loadUser docs",
    })
    index = build_symbol_index(tmp_path)
    assert index.files == ["src/app.ts"]
    assert index.identifiers["loadUser"] == 1
    assert "vendored" not in index.identifiers


def test_index_respects_limits(tmp_path: Path):
    _layout(tmp_path, {f"m{i}.py": "alpha_one = beta_two\n" for i in range(5)})
    index = build_symbol_index(tmp_path, IndexOptions(max_files=2, max_per_file_ids=1))
    assert index.files == ["m0.py", "m1.py"]
    assert index.identifiers == Counter({"alpha_one": 2})


def test_top_identifiers_breaks_ties_alphabetically():
    index = SymbolIndex(identifiers=Counter({"zeta": 2, "alpha": 2, "middle": 3, "ab": 9}))
    assert top_identifiers(index, limit=10) == ["middle", "alpha", "zeta"]


# --------------------------------------------------------------------------- #
# Project Brief
# --------------------------------------------------------------------------- #
@pytest.fixture
def python_repo(tmp_path: Path) -> Path:
    return _layout(tmp_path, {
        "pyproject.toml": "[project]\nname = 'shop'\n[tool.pytest.ini_options]\naddopts = '-q'\n",
        "src/models/user.py": (
            "class UserAccount:\n    pass\n\n"
            "user_name = 'x'\naccount_total = 0\nMAX_USERS = 10\n\n"
            "def load_user(user_id):\n    return user_id\n"
        ),
        "src/api/routes.py": "from ..models.user import load_user\n\nroute_table = []\n",
        "tests/test_user.py": (
            "import pytest\n\n@pytest.fixture\ndef user_record():\n    return {}\n\n"
            "def test_user(user_record):\n    assert user_record == {}\n"
        ),
        "openapi.yaml": (
            "openapi: 3.0.0\ninfo: {title: Shop, version: '1'}\npaths: {}\n"
            "components:\n  schemas:\n    User: {type: object}\n    Order: {type: object}\n"
        ),
        "dist/bundle.txt": "",
    })


def test_brief_naming_and_testing(python_repo: Path):
    brief = build_project_brief(python_repo)
    assert brief.naming.variable == "snake_case"
    assert brief.naming.type == "PascalCase"
    assert brief.naming.constant == "UPPER_SNAKE_CASE"
    assert brief.naming.files == "snake_case"
    assert brief.testing.framework == "pytest"
    assert brief.testing.style == ("fixtures",)
    assert brief.testing.test_pattern == "tests/**/test_*.py"
    assert recommended_styles(brief) == ("snake_case", "PascalCase", "UPPER_SNAKE_CASE")


def test_brief_layers_glossary_schema(python_repo: Path):
    brief = build_project_brief(python_repo)
    layers = {layer.name: layer.allowed_imports for layer in brief.layers}
    assert layers == {"api": ("models",), "models": (), "tests": ()}
    # glossary is scoped to the domain directory
    assert brief.glossary[0] == "user_id"
    assert "route_table" not in brief.glossary
    assert brief.schema.source == "openapi"
    assert brief.schema.types == ("User", "Order")
    assert brief.do_not_touch == ("dist",)


def test_brief_prompt_rendering(python_repo: Path):
    text = format_brief_for_prompt(build_project_brief(python_repo))
    assert text.startswith("# Project Brief")
    assert "## Naming Conventions" in text
    assert "- Variables: snake_case" in text
    assert "## Schema Types (openapi)" in text


def test_schema_types_none_without_sources(tmp_path: Path):
    source, types = extract_schema_types(tmp_path)
    assert source is None
    assert types == []
