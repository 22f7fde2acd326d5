"""
Module: market_kernel.selectors.base
Responsibility: Abstract base class for the read-only selectors behind the
    admin and insight views (balances, histories, order track records).
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    the DTOs in domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs or plain values, never ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from market_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries, and
        returns DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session
