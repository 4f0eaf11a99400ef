"""
Canonical workflow types (``placement_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines.  Guard, Transition and
Workflow are defined once and used by the application lifecycle.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the lifecycle module does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``candidate_status`` is the candidate side effect applied when the
    transition fires (None means the candidate is left untouched).
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    candidate_status: str | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state} "
                "is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.from_state} -> "
                    f"{t.to_state} references an undeclared state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state} "
                    "has an outgoing transition"
                )

    def find(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition for the pair, or None when not declared."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def outgoing(self, from_state: str) -> tuple[Transition, ...]:
        """All transitions leaving ``from_state``, in declaration order."""
        return tuple(t for t in self.transitions if t.from_state == from_state)
