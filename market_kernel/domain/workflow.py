"""
Canonical workflow types (``market_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for state machines.  Orders, work requests, proposals
and offers each declare one ``Workflow``; services never hard-code which
status follows which.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* At most one transition per (from_state, action) pair.
"""

from __future__ import annotations

from dataclasses import dataclass

from market_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Contract: frozen.  ``moves_money=True`` marks transitions that settle
    or hold funds through the wallet ledger.
    """
    from_state: str
    to_state: str
    action: str
    moves_money: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    ``terminal_states`` are states with no outgoing transitions.
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
                f"{self.name}: initial state '{self.initial_state}' is not a declared state"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.action} references an undeclared state"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(
                    f"{self.name}: duplicate transition for action '{t.action}' "
                    f"from '{t.from_state}'"
                )
            seen.add(key)
        for state in self.terminal_states:
            if any(t.from_state == state for t in self.transitions):
                raise ValueError(f"{self.name}: terminal state '{state}' has outgoing transitions")

    def find(self, state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t
        return None

    def allowed_actions(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)

    def source_states(self, action: str) -> tuple[str, ...]:
        """States from which ``action`` is legal."""
        return tuple(t.from_state for t in self.transitions if t.action == action)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


def next_state(workflow: Workflow, state: str, action: str) -> str:
    """
    The single transition function.

    Raises:
        InvalidTransitionError: ``action`` is not allowed from ``state``.
    """
    transition = workflow.find(state, action)
    if transition is None:
        raise InvalidTransitionError(workflow=workflow.name, state=state, action=action)
    return transition.to_state
