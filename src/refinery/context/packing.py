# src/refinery/context/packing.py
"""
Token-bounded packing of repository files into a prompt section.

Files are taken priority paths first, then shallowest directory first, and
added whole until the token budget is spent.  Tokens are counted with
tiktoken's ``o200k_base`` encoding.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Tuple

import tiktoken


@lru_cache(maxsize=1)
def _encoding():
    return tiktoken.get_encoding("o200k_base")


def count_tokens(text: str) -> int:
    return len(_encoding().encode(text))


def render_file(path: str, text: str) -> str:
    return f"--- {path} ---\n{text}\n"


def pack_files(
    files: Mapping[str, str],
    max_tokens: int,
    *,
    priority: Sequence[str] = (),
) -> Tuple[List[str], str]:
    """
    Return ``(selected_paths, rendered_text)``.  A file that does not fit is
    skipped and later, smaller files may still be taken.
    """
    first = [p for p in priority if p in files]
    rest = sorted((p for p in files if p not in first), key=lambda p: (p.count("/"), p))

    selected: List[str] = []
    blobs: List[str] = []
    total = 0
    for path in first + rest:
        blob = render_file(path, files[path])
        tokens = count_tokens(blob)
        if total + tokens > max_tokens:
            continue
        selected.append(path)
        blobs.append(blob)
        total += tokens
    return selected, "".join(blobs)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Keep the head of *text* within *max_tokens* tokens."""
    enc = _encoding()
    ids = enc.encode(text)
    if len(ids) <= max_tokens:
        return text
    return enc.decode(ids[:max_tokens]) + "\n…[truncated]"


def read_tree_files(root: str | os.PathLike[str], paths: Sequence[str]) -> Dict[str, str]:
    """Readable UTF-8 files among *paths*; others are silently left out."""
    out: Dict[str, str] = {}
    for rel in paths:
        p = Path(root) / rel
        try:
            out[rel] = p.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
    return out
