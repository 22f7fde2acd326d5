"""
Lifecycle definitions for every stateful marketplace entity.

Each status column is driven by exactly one Workflow below, and every
service resolves the target status with ``next_state`` before issuing its
compare-and-set UPDATE.  State names equal the values of the status enums
in ``market_kernel.models``.

Order:

    active --complete--> completed
    active --dispute---> disputed
    disputed --resolve-> completed

A refunded or split dispute still ends in ``completed``; the money outcome
is recorded on the order as ``resolution_outcome``.
"""

from market_kernel.domain.workflow import Transition, Workflow, next_state

ORDER_WORKFLOW = Workflow(
    name="order",
    description="Escrowed order from hold to settlement",
    initial_state="active",
    states=("active", "completed", "disputed"),
    transitions=(
        Transition("active", "completed", action="complete", moves_money=True),
        Transition("active", "disputed", action="dispute"),
        Transition("disputed", "completed", action="resolve", moves_money=True),
    ),
    terminal_states=("completed",),
)

WORK_REQUEST_WORKFLOW = Workflow(
    name="work_request",
    description="Posted work request from open to completion",
    initial_state="open",
    states=("open", "in_progress", "completed", "closed"),
    transitions=(
        Transition("open", "in_progress", action="accept_proposal", moves_money=True),
        Transition("open", "closed", action="close"),
        Transition("in_progress", "completed", action="complete"),
    ),
    terminal_states=("completed", "closed"),
)

PROPOSAL_WORKFLOW = Workflow(
    name="proposal",
    description="Provider application on a work request",
    initial_state="pending",
    states=("pending", "accepted", "rejected"),
    transitions=(
        Transition("pending", "accepted", action="accept"),
        Transition("pending", "rejected", action="reject"),
    ),
    terminal_states=("accepted", "rejected"),
)

OFFER_WORKFLOW = Workflow(
    name="offer",
    description="Direct offer inside a conversation",
    initial_state="pending",
    states=("pending", "accepted", "rejected", "expired"),
    transitions=(
        Transition("pending", "accepted", action="accept", moves_money=True),
        Transition("pending", "rejected", action="reject"),
        Transition("pending", "expired", action="expire"),
    ),
    terminal_states=("accepted", "rejected", "expired"),
)

ALL_WORKFLOWS = (
    ORDER_WORKFLOW,
    WORK_REQUEST_WORKFLOW,
    PROPOSAL_WORKFLOW,
    OFFER_WORKFLOW,
)

__all__ = [
    "ORDER_WORKFLOW",
    "WORK_REQUEST_WORKFLOW",
    "PROPOSAL_WORKFLOW",
    "OFFER_WORKFLOW",
    "ALL_WORKFLOWS",
    "next_state",
]
