"""
Module: stock_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors MUST NOT call session.add(), delete(),
      commit() or flush().
    - DTO return convention: Selectors return frozen dataclasses, not ORM
      instances.
    - Tenant scoping: every public query takes an organization_id and
      filters on it.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  The caller owns the session and
        its transaction scope.
    """

    def __init__(self, session: Session):
        self.session = session
