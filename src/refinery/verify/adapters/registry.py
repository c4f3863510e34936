# src/refinery/verify/adapters/registry.py
"""
Single place to obtain language adapters.

Avoids hard-coding adapter classes throughout the pipeline.
"""

from typing import List, Type

from refinery.repo.probe import Capabilities

from .base import StageTimeouts, ToolAdapter
from .go import GoAdapter
from .jvm import JvmAdapter
from .node import NodeAdapter
from .python import PythonAdapter
from .rust import RustAdapter

_ADAPTERS: dict[str, Type[ToolAdapter]] = {
    "python": PythonAdapter,
    "node": NodeAdapter,
    "go": GoAdapter,
    "rust": RustAdapter,
    "jvm": JvmAdapter,
}


def get_adapter(name: str, **kwargs) -> ToolAdapter:
    """
    Instantiate an adapter by `name`.

    Example:
        adapter = get_adapter("python")
    """
    if name not in _ADAPTERS:
        raise ValueError(f"Unknown adapter '{name}'. Valid: {list(_ADAPTERS)}")
    return _ADAPTERS[name](**kwargs)


def adapters_for(caps: Capabilities, timeouts: StageTimeouts | None = None) -> List[ToolAdapter]:
    """Adapters whose languages were probed, in registry order."""
    out = []
    for cls in _ADAPTERS.values():
        adapter = cls(timeouts=timeouts)
        if adapter.applies(caps):
            out.append(adapter)
    return out
