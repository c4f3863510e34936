# src/refinery/verify/shell.py
"""
Refinery CommandRunner
----------------------

Every external tool (formatter, linter, type-checker, test runner, schema
validator) is launched through :class:`CommandRunner`.  Timeouts, missing
binaries and non-zero exits come back as a populated
:class:`CommandResult` so adapters can turn them into report entries;
only :meth:`CommandRunner.check` raises.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

logger = logging.getLogger("refinery.verify.shell")

DEFAULT_TIMEOUT_S = 120.0


class ToolCommandError(Exception):
    """Raised by CommandRunner.check() when a command does not succeed."""


@dataclass(slots=True)
class CommandResult:
    cmd: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    missing: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.missing

    @property
    def output(self) -> str:
        return (self.stdout + ("\n" if self.stdout and self.stderr else "") + self.stderr).strip()

    def describe_failure(self) -> str:
        name = self.cmd[0] if self.cmd else "<empty>"
        if self.missing:
            return f"{name}: tool not found"
        if self.timed_out:
            return f"{name}: timed out"
        first = self.output.splitlines()[0] if self.output else ""
        return f"{name}: exit {self.returncode}" + (f": {first}" if first else "")


class CommandRunner:
    """Sub-process launcher bound to one working directory."""

    def __init__(
        self,
        cwd: str | os.PathLike[str] = ".",
        *,
        env: Optional[Mapping[str, str]] = None,
        default_timeout: float = DEFAULT_TIMEOUT_S,
    ):
        self.cwd = os.path.abspath(cwd)
        if not os.path.isdir(self.cwd):
            raise ValueError(f"cwd '{self.cwd}' does not exist or is not a directory.")
        self.default_timeout = default_timeout
        self._env: Dict[str, str] = {**os.environ, **(env or {})}

    # ------------------------------------------------------------------ #
    def which(self, binary: str) -> Optional[str]:
        local = os.path.join(self.cwd, "node_modules", ".bin", binary)
        if os.path.isfile(local) and os.access(local, os.X_OK):
            return local
        return shutil.which(binary, path=self._env.get("PATH"))

    def run(self, cmd: Sequence[str], *, timeout: float | None = None) -> CommandResult:
        argv = list(cmd)
        limit = timeout if timeout is not None else self.default_timeout
        logger.debug("run %s (cwd=%s, timeout=%.0fs)", " ".join(argv), self.cwd, limit)
        try:
            proc = subprocess.run(
                argv,
                cwd=self.cwd,
                env=self._env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                timeout=limit,
                check=False,
            )
        except FileNotFoundError:
            logger.info("tool not found: %s", argv[0] if argv else "<empty>")
            return CommandResult(cmd=argv, returncode=127, missing=True)
        except subprocess.TimeoutExpired as exc:
            logger.warning("timeout after %.0fs: %s", limit, " ".join(argv))
            return CommandResult(
                cmd=argv,
                returncode=-1,
                stdout=_decode(exc.stdout),
                stderr=_decode(exc.stderr),
                timed_out=True,
            )
        except OSError as exc:
            logger.warning("cannot launch %s: %s", " ".join(argv), exc)
            return CommandResult(cmd=argv, returncode=126, stderr=str(exc), missing=True)
        return CommandResult(
            cmd=argv,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

    def check(self, cmd: Sequence[str], *, timeout: float | None = None) -> CommandResult:
        result = self.run(cmd, timeout=timeout)
        if not result.ok:
            raise ToolCommandError(result.describe_failure())
        return result


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
