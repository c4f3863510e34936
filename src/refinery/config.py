# src/refinery/config.py
"""
Refinery configuration.

Settings come from three layers, later ones winning:

1. dataclass defaults below;
2. ``refinery_config.json`` (or an explicit path), relative paths resolved
   against the file's directory;
3. ``REFINERY_<KEY>`` environment variables, after ``.env`` is loaded.

List-valued keys accept a comma-separated string in the environment.
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from refinery.dev.constraints import EditConstraints, default_read_only_paths
from refinery.dev.patch import PatchLimits
from refinery.repo.symbol_index import SKIP_DIRS, IndexOptions
from refinery.verify.adapters.base import StageTimeouts
from refinery.verify.pipeline import PipelineOptions

CONFIG_FILENAME = "refinery_config.json"
ENV_PREFIX = "REFINERY_"
_PATH_KEYS = ("cache_dir", "record_file")


class ConfigError(ValueError):
    """Unknown key or a value of the wrong type."""


@dataclass(slots=True)
class RefineryConfig:
    max_iters: int = 4
    fix_on_reject: bool = False
    tournament_k: int = 2
    max_patch_ops: int = 50
    max_patch_bytes: int = 50_000
    max_files: int = 5000
    max_per_file_ids: int = 200
    exclude_dirs: Tuple[str, ...] = ()
    tool_timeout_s: float = 180.0
    test_timeout_s: float = 300.0
    write_formatting: bool = False
    max_workers: int = 4
    cache_dir: Optional[str] = None
    record_file: Optional[str] = None
    allowed_paths: Tuple[str, ...] = ()
    read_only_paths: Tuple[str, ...] = field(default_factory=default_read_only_paths)
    allow_public_renames: bool = False
    enforce_minimal_diffs: bool = False

    # ------------------------------------------------------------------ #
    # Derived option objects
    # ------------------------------------------------------------------ #
    def patch_limits(self) -> PatchLimits:
        return PatchLimits(max_ops=self.max_patch_ops, max_bytes=self.max_patch_bytes)

    def index_options(self) -> IndexOptions:
        return IndexOptions(
            max_files=self.max_files,
            max_per_file_ids=self.max_per_file_ids,
            exclude=SKIP_DIRS | frozenset(self.exclude_dirs),
        )

    def pipeline_options(self) -> PipelineOptions:
        return PipelineOptions(
            write_formatting=self.write_formatting,
            timeouts=StageTimeouts(tool_s=self.tool_timeout_s, test_s=self.test_timeout_s),
            index_options=self.index_options(),
            max_workers=self.max_workers,
        )

    def edit_constraints(self) -> EditConstraints:
        return EditConstraints(
            allowed_paths=self.allowed_paths,
            read_only_paths=self.read_only_paths,
            allow_public_renames=self.allow_public_renames,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}


# --------------------------------------------------------------------------- #
# Loading
# --------------------------------------------------------------------------- #
def load_config(
    path: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> RefineryConfig:
    """
    Build a :class:`RefineryConfig`.  Without *path*, ``refinery_config.json``
    in the working directory is used when present.  *env* defaults to
    ``os.environ`` (after ``.env`` expansion).
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values: Dict[str, Any] = {}
    cfg_path = Path(path) if path is not None else Path.cwd() / CONFIG_FILENAME
    if cfg_path.is_file():
        try:
            raw = json.loads(cfg_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{cfg_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"{cfg_path}: top level must be an object")
        values.update(raw)
        base = cfg_path.resolve().parent
        for key in _PATH_KEYS:
            if values.get(key) is not None and not os.path.isabs(str(values[key])):
                values[key] = str((base / values[key]).resolve())
    elif path is not None:
        raise ConfigError(f"config file not found: {cfg_path}")

    fields = {f.name: f for f in dataclasses.fields(RefineryConfig)}
    for name in fields:
        env_val = env.get(ENV_PREFIX + name.upper())
        if env_val is not None:
            values[name] = env_val

    unknown = sorted(set(values) - set(fields))
    if unknown:
        raise ConfigError(f"unknown config key(s): {', '.join(unknown)}")

    defaults = RefineryConfig()
    return RefineryConfig(**{
        k: _coerce(k, v, getattr(defaults, k)) for k, v in values.items()
    })


def _coerce(key: str, value: Any, default: Any) -> Any:
    if value is None:
        return None
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                low = value.strip().lower()
                if low in ("1", "true", "yes", "on"):
                    return True
                if low in ("0", "false", "no", "off", ""):
                    return False
                raise ValueError(value)
            return bool(value)
        if isinstance(default, int):
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, tuple):
            if isinstance(value, str):
                return tuple(p.strip() for p in value.split(",") if p.strip())
            return tuple(str(v) for v in value)
        return str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value for {key}: {value!r}") from exc
