"""
Lifecycle transition tables and the single transition function.

Every status change in the kernel resolves its target through
``next_state``; anything not in the table must raise.
"""

import pytest

from market_kernel.domain.lifecycles import (
    ALL_WORKFLOWS,
    OFFER_WORKFLOW,
    ORDER_WORKFLOW,
    PROPOSAL_WORKFLOW,
    WORK_REQUEST_WORKFLOW,
)
from market_kernel.domain.workflow import Transition, Workflow, next_state
from market_kernel.exceptions import InvalidTransitionError
from market_kernel.models.negotiation import OfferStatus, ProposalStatus, WorkRequestStatus
from market_kernel.models.order import OrderStatus


class TestOrderWorkflow:

    @pytest.mark.parametrize(
        "state, action, expected",
        [
            ("active", "complete", "completed"),
            ("active", "dispute", "disputed"),
            ("disputed", "resolve", "completed"),
        ],
    )
    def test_allowed_transitions(self, state, action, expected):
        assert next_state(ORDER_WORKFLOW, state, action) == expected

    @pytest.mark.parametrize(
        "state, action",
        [
            ("completed", "complete"),
            ("completed", "dispute"),
            ("completed", "resolve"),
            ("disputed", "complete"),
            ("disputed", "dispute"),
            ("active", "resolve"),
        ],
    )
    def test_everything_else_is_rejected(self, state, action):
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_state(ORDER_WORKFLOW, state, action)
        assert exc_info.value.workflow == "order"
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_completed_is_terminal(self):
        assert ORDER_WORKFLOW.is_terminal("completed")
        assert ORDER_WORKFLOW.allowed_actions("completed") == ()

    def test_money_moving_transitions(self):
        moving = {t.action for t in ORDER_WORKFLOW.transitions if t.moves_money}
        assert moving == {"complete", "resolve"}


class TestNegotiationWorkflows:

    def test_request_closes_only_while_open(self):
        assert next_state(WORK_REQUEST_WORKFLOW, "open", "close") == "closed"
        with pytest.raises(InvalidTransitionError):
            next_state(WORK_REQUEST_WORKFLOW, "in_progress", "close")

    def test_request_completes_only_from_in_progress(self):
        assert WORK_REQUEST_WORKFLOW.source_states("complete") == ("in_progress",)

    def test_proposal_decided_once(self):
        assert next_state(PROPOSAL_WORKFLOW, "pending", "accept") == "accepted"
        for decided in ("accepted", "rejected"):
            for action in ("accept", "reject"):
                with pytest.raises(InvalidTransitionError):
                    next_state(PROPOSAL_WORKFLOW, decided, action)

    def test_offer_can_expire_only_while_pending(self):
        assert next_state(OFFER_WORKFLOW, "pending", "expire") == "expired"
        with pytest.raises(InvalidTransitionError):
            next_state(OFFER_WORKFLOW, "accepted", "expire")


class TestWorkflowStatesMatchModels:
    """State names are the values of the persisted status enums."""

    @pytest.mark.parametrize(
        "workflow, enum",
        [
            (ORDER_WORKFLOW, OrderStatus),
            (WORK_REQUEST_WORKFLOW, WorkRequestStatus),
            (PROPOSAL_WORKFLOW, ProposalStatus),
            (OFFER_WORKFLOW, OfferStatus),
        ],
    )
    def test_states_equal_enum_values(self, workflow, enum):
        assert set(workflow.states) == {member.value for member in enum}

    def test_all_workflows_have_unique_names(self):
        names = [w.name for w in ALL_WORKFLOWS]
        assert len(names) == len(set(names))


class TestWorkflowValidation:

    def test_unknown_initial_state(self):
        with pytest.raises(ValueError, match="initial state"):
            Workflow(
                name="broken",
                description="",
                initial_state="nowhere",
                states=("a",),
                transitions=(),
            )

    def test_undeclared_target_state(self):
        with pytest.raises(ValueError, match="undeclared"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_duplicate_action_from_same_state(self):
        with pytest.raises(ValueError, match="duplicate"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b", "c"),
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("a", "c", action="go"),
                ),
            )

    def test_terminal_state_with_exit(self):
        with pytest.raises(ValueError, match="terminal"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("a", "b", action="go"),),
                terminal_states=("a",),
            )
