"""
Typed Exception Hierarchy for the Market Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money-moving code must report failures precisely. Callers (HTTP handlers,
job runners, the notification layer) decide what to do by exception TYPE
and by the machine-readable ``code`` attribute, never by parsing messages.

    try:
        marketplace.accept_proposal(request_id, proposal_id, actor)
    except AlreadyDecidedError as e:
        # Lost a race -- refresh the view, do not retry blindly
        return conflict(code=e.code, entity=e.entity_type)
    except InsufficientFundsError as e:
        return payment_required(needed=e.requested, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    MarketKernelError (base)
    |
    +-- InputValidationError         rejected before any mutation
    |   +-- InvalidAmountError
    |   +-- BudgetTooLowError
    |   +-- InvalidBudgetRangeError
    |   +-- InvalidDeliveryWindowError
    |   +-- FeeExceedsAmountError
    |   +-- InvalidRatingError
    |   +-- InvalidSplitError
    |   +-- InvalidMilestonesError
    |   +-- InvalidExpiryError
    |   +-- SelfDealingError
    |
    +-- AuthorizationError           actor is not allowed to act
    |   +-- NotOwnerError
    |   +-- NotSellerError
    |   +-- NotPartyError
    |   +-- NotReceiverError
    |   +-- NotArbiterError
    |   +-- RoleNotPermittedError
    |
    +-- StateConflictError           stale view or lost race; refresh state
    |   +-- RequestNotOpenError
    |   +-- DuplicateApplicationError
    |   +-- AlreadyDecidedError
    |   +-- OfferExpiredError
    |   +-- OfferNotExpiredError
    |   +-- OrderNotActiveError
    |   +-- NotDisputedError
    |   +-- AlreadyResolvedError
    |   +-- ConsultationAlreadyPaidError
    |   +-- ConsultationNotAvailableError
    |   +-- InvalidTransitionError
    |
    +-- ResourceError               only the account holder can fix
    |   +-- InsufficientFundsError
    |   +-- AccountFrozenError
    |
    +-- NotFoundError
    |   +-- AccountNotFoundError
    |   +-- WorkRequestNotFoundError
    |   +-- ProposalNotFoundError
    |   +-- OfferNotFoundError
    |   +-- OrderNotFoundError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Nothing here inherits from ValueError/RuntimeError. Domain failures are
   catchable as a group (``except MarketKernelError``) without also catching
   programming errors.

2. ``code`` is a class attribute so API layers can document every code
   without instantiating anything.

3. No exception in this module is retried by the kernel. Every failure
   aborts the enclosing transaction and leaves prior state unchanged.
"""


class MarketKernelError(Exception):
    """
    Base exception for all market kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "MARKET_KERNEL_ERROR"


# Validation errors


class InputValidationError(MarketKernelError):
    """Base exception for input rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(InputValidationError):
    """Amount is not a positive integer in the smallest currency unit."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str = "must be a positive integer"):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class BudgetTooLowError(InputValidationError):
    """Price or budget is below the platform floor."""

    code: str = "BUDGET_TOO_LOW"

    def __init__(self, amount: int, floor: int):
        self.amount = amount
        self.floor = floor
        super().__init__(f"Amount {amount} is below the platform floor of {floor}")


class InvalidBudgetRangeError(InputValidationError):
    """Budget maximum is lower than the budget minimum."""

    code: str = "INVALID_BUDGET_RANGE"

    def __init__(self, budget_min: int, budget_max: int):
        self.budget_min = budget_min
        self.budget_max = budget_max
        super().__init__(
            f"Budget maximum {budget_max} is lower than minimum {budget_min}"
        )


class InvalidDeliveryWindowError(InputValidationError):
    """Delivery days must be a whole number of days within the allowed window."""

    code: str = "INVALID_DELIVERY_WINDOW"

    def __init__(self, delivery_days: object, max_days: int):
        self.delivery_days = delivery_days
        self.max_days = max_days
        super().__init__(
            f"Delivery window must be between 1 and {max_days} days, got {delivery_days!r}"
        )


class FeeExceedsAmountError(InputValidationError):
    """The fixed fee leaves nothing (or less than nothing) to credit."""

    code: str = "FEE_EXCEEDS_AMOUNT"

    def __init__(self, amount: int, fee: int):
        self.amount = amount
        self.fee = fee
        super().__init__(f"Amount {amount} does not cover the fee of {fee}")


class InvalidRatingError(InputValidationError):
    """Rating outside the 1..5 range."""

    code: str = "INVALID_RATING"

    def __init__(self, rating: object):
        self.rating = rating
        super().__init__(f"Rating must be between 1 and 5, got {rating!r}")


class InvalidSplitError(InputValidationError):
    """Split ratio for a dispute resolution is out of range."""

    code: str = "INVALID_SPLIT"

    def __init__(self, seller_share_bps: object):
        self.seller_share_bps = seller_share_bps
        super().__init__(
            f"Seller share must be between 0 and 10000 basis points, got {seller_share_bps!r}"
        )


class InvalidMilestonesError(InputValidationError):
    """Offer milestones are malformed or exceed the offer price."""

    code: str = "INVALID_MILESTONES"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid milestones: {reason}")


class InvalidExpiryError(InputValidationError):
    """Offer expiry is naive or not in the future."""

    code: str = "INVALID_EXPIRY"

    def __init__(self, expires_at: str, reason: str = "is not in the future"):
        self.expires_at = expires_at
        self.reason = reason
        super().__init__(f"Offer expiry {expires_at} {reason}")


class SelfDealingError(InputValidationError):
    """An actor attempted to negotiate with themselves."""

    code: str = "SELF_DEALING"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} cannot negotiate with themselves")


# Authorization errors


class AuthorizationError(MarketKernelError):
    """Base exception for actors acting outside their permissions."""

    code: str = "AUTHORIZATION_ERROR"


class NotOwnerError(AuthorizationError):
    """Actor does not own the work request."""

    code: str = "NOT_OWNER"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} does not own work request {request_id}")


class NotSellerError(AuthorizationError):
    """Only the seller may perform this order action."""

    code: str = "NOT_SELLER"

    def __init__(self, order_id: str, actor_id: str):
        self.order_id = order_id
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} is not the seller on order {order_id}")


class NotPartyError(AuthorizationError):
    """Actor is neither buyer nor seller (or not the permitted party)."""

    code: str = "NOT_PARTY"

    def __init__(self, order_id: str, actor_id: str):
        self.order_id = order_id
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} is not a permitted party on order {order_id}")


class NotReceiverError(AuthorizationError):
    """Only the receiver of an offer may decide it."""

    code: str = "NOT_RECEIVER"

    def __init__(self, offer_id: str, actor_id: str):
        self.offer_id = offer_id
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} is not the receiver of offer {offer_id}")


class NotArbiterError(AuthorizationError):
    """Only arbiters may resolve disputes."""

    code: str = "NOT_ARBITER"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} is not an arbiter")


class RoleNotPermittedError(AuthorizationError):
    """Actor's role does not allow this operation."""

    code: str = "ROLE_NOT_PERMITTED"

    def __init__(self, actor_id: str, role: str, operation: str):
        self.actor_id = actor_id
        self.role = role
        self.operation = operation
        super().__init__(f"Role {role} (actor {actor_id}) may not {operation}")


# State-conflict errors


class StateConflictError(MarketKernelError):
    """Base exception for stale views and lost races."""

    code: str = "STATE_CONFLICT"


class RequestNotOpenError(StateConflictError):
    """Work request no longer accepts this operation."""

    code: str = "REQUEST_NOT_OPEN"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Work request {request_id} is {status}, not open")


class DuplicateApplicationError(StateConflictError):
    """Provider already has a live proposal on this work request."""

    code: str = "DUPLICATE_APPLICATION"

    def __init__(self, request_id: str, provider_id: str):
        self.request_id = request_id
        self.provider_id = provider_id
        super().__init__(
            f"Provider {provider_id} already applied to work request {request_id}"
        )


class AlreadyDecidedError(StateConflictError):
    """Negotiation item was already accepted, rejected or expired."""

    code: str = "ALREADY_DECIDED"

    def __init__(self, entity_type: str, entity_id: str, status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        super().__init__(f"{entity_type} {entity_id} was already decided ({status})")


class OfferExpiredError(StateConflictError):
    """Offer passed its expiry timestamp before acceptance."""

    code: str = "OFFER_EXPIRED"

    def __init__(self, offer_id: str, expires_at: str):
        self.offer_id = offer_id
        self.expires_at = expires_at
        super().__init__(f"Offer {offer_id} expired at {expires_at}")


class OfferNotExpiredError(StateConflictError):
    """Offer has no expiry, or has not reached it yet."""

    code: str = "OFFER_NOT_EXPIRED"

    def __init__(self, offer_id: str, expires_at: str | None):
        self.offer_id = offer_id
        self.expires_at = expires_at
        super().__init__(f"Offer {offer_id} has not expired (expires_at={expires_at})")


class OrderNotActiveError(StateConflictError):
    """Order has left the active state."""

    code: str = "ORDER_NOT_ACTIVE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}, not active")


class NotDisputedError(StateConflictError):
    """Resolution requested for an order that is not disputed."""

    code: str = "NOT_DISPUTED"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}, not disputed")


class AlreadyResolvedError(StateConflictError):
    """Dispute was already resolved; no second settlement."""

    code: str = "ALREADY_RESOLVED"

    def __init__(self, order_id: str, outcome: str | None):
        self.order_id = order_id
        self.outcome = outcome
        super().__init__(f"Dispute on order {order_id} already resolved ({outcome})")


class ConsultationAlreadyPaidError(StateConflictError):
    """An unused consultation payment already exists for this conversation."""

    code: str = "CONSULTATION_ALREADY_PAID"

    def __init__(self, user_id: str, conversation_id: str):
        self.user_id = user_id
        self.conversation_id = conversation_id
        super().__init__(
            f"User {user_id} already holds an unused consultation payment "
            f"for conversation {conversation_id}"
        )


class ConsultationNotAvailableError(StateConflictError):
    """No unused consultation payment to schedule against."""

    code: str = "CONSULTATION_NOT_AVAILABLE"

    def __init__(self, user_id: str, conversation_id: str):
        self.user_id = user_id
        self.conversation_id = conversation_id
        super().__init__(
            f"No unused consultation payment for user {user_id} "
            f"in conversation {conversation_id}"
        )


class InvalidTransitionError(StateConflictError):
    """Event is not allowed from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, workflow: str, state: str, action: str):
        self.workflow = workflow
        self.state = state
        self.action = action
        super().__init__(f"{workflow}: action '{action}' not allowed from '{state}'")


# Resource errors


class ResourceError(MarketKernelError):
    """Base exception for failures only the account holder can fix."""

    code: str = "RESOURCE_ERROR"


class InsufficientFundsError(ResourceError):
    """Debit exceeds the available balance."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, available: int, requested: int):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds on account {account_id}: "
            f"available {available}, requested {requested}"
        )


class AccountFrozenError(ResourceError):
    """Account is soft-disabled for debits."""

    code: str = "ACCOUNT_FROZEN"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} is frozen")


# Not-found errors


class NotFoundError(MarketKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    """Wallet account does not exist."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = account_ref
        super().__init__(f"Account not found: {account_ref}")


class WorkRequestNotFoundError(NotFoundError):
    """Work request does not exist."""

    code: str = "WORK_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Work request not found: {request_id}")


class ProposalNotFoundError(NotFoundError):
    """Proposal does not exist on the given work request."""

    code: str = "PROPOSAL_NOT_FOUND"

    def __init__(self, request_id: str, proposal_id: str):
        self.request_id = request_id
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} not found on work request {request_id}")


class OfferNotFoundError(NotFoundError):
    """Offer does not exist."""

    code: str = "OFFER_NOT_FOUND"

    def __init__(self, offer_id: str):
        self.offer_id = offer_id
        super().__init__(f"Offer not found: {offer_id}")


class OrderNotFoundError(NotFoundError):
    """Order does not exist."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


# Immutability errors


class ImmutabilityError(MarketKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Completed ledger transactions are append-only; corrections are new rows.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
