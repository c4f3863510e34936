# src/refinery/dev/states.py
"""refinery.dev.states

Runtime enforcement of the refinement loop's state ordering.

    GENERATED → SCORED → JUDGED → ACCEPTED
                           │
                           └→ FIXING → RESCORED → JUDGED …

Any state may fall to EXHAUSTED; ACCEPTED and EXHAUSTED are terminal.
:class:`LoopStateMachine` raises :class:`StateOrderError` on an illegal
move, and the ``enforce_state`` decorator guards methods of any object
exposing ``self._machine``.
"""

from __future__ import annotations

import enum
import functools
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple


class StateOrderError(RuntimeError):
    """Raised when the loop moves between states out of order."""


class LoopState(str, enum.Enum):
    GENERATED = "generated"
    SCORED = "scored"
    JUDGED = "judged"
    ACCEPTED = "accepted"
    FIXING = "fixing"
    RESCORED = "rescored"
    EXHAUSTED = "exhausted"


TERMINAL: FrozenSet[LoopState] = frozenset({LoopState.ACCEPTED, LoopState.EXHAUSTED})

TRANSITIONS: Dict[LoopState, FrozenSet[LoopState]] = {
    LoopState.GENERATED: frozenset({LoopState.SCORED, LoopState.EXHAUSTED}),
    LoopState.SCORED: frozenset({LoopState.JUDGED, LoopState.EXHAUSTED}),
    LoopState.JUDGED: frozenset({LoopState.ACCEPTED, LoopState.FIXING, LoopState.EXHAUSTED}),
    LoopState.FIXING: frozenset({LoopState.RESCORED, LoopState.EXHAUSTED}),
    LoopState.RESCORED: frozenset({LoopState.JUDGED, LoopState.EXHAUSTED}),
    LoopState.ACCEPTED: frozenset(),
    LoopState.EXHAUSTED: frozenset(),
}


class LoopStateMachine:
    """
    Current state plus the ordered history of ``(from, to, note)`` moves.

    *on_transition* is called after each accepted move (used to persist a
    run record).
    """

    def __init__(
        self,
        start: LoopState = LoopState.GENERATED,
        *,
        on_transition: Optional[Callable[[LoopState, LoopState, str], None]] = None,
    ):
        self.state = start
        self.history: List[Tuple[LoopState, LoopState, str]] = []
        self._on_transition = on_transition

    @property
    def done(self) -> bool:
        return self.state in TERMINAL

    def can(self, target: LoopState) -> bool:
        return target in TRANSITIONS[self.state]

    def advance(self, target: LoopState, note: str = "") -> None:
        if not self.can(target):
            raise StateOrderError(
                f"illegal transition {self.state.value} → {target.value}"
            )
        prev, self.state = self.state, target
        self.history.append((prev, target, note))
        if self._on_transition is not None:
            self._on_transition(prev, target, note)

    def history_dicts(self) -> List[Dict[str, str]]:
        return [{"from": a.value, "to": b.value, "note": n} for a, b, n in self.history]


def enforce_state(
    *required: LoopState,
    mark: LoopState | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorate a method that may only run while ``self._machine`` is in one of
    *required*; on normal return advance to *mark* when given.
    """

    req: Tuple[LoopState, ...] = tuple(required)

    def _decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        def _wrapper(self, *args, **kwargs):
            machine: LoopStateMachine = self._machine
            if req and machine.state not in req:
                raise StateOrderError(
                    f"{func.__name__} cannot run in state {machine.state.value} "
                    f"(needs {', '.join(s.value for s in req)})"
                )
            result = func(self, *args, **kwargs)
            if mark is not None:
                machine.advance(mark, func.__name__)
            return result

        return _wrapper

    return _decorator
