"""
Actor context.

The auth layer resolves who is calling and hands the kernel an ActorContext.
The kernel never derives identity or tenancy itself; it only checks the
context against the operation before touching ledger state.
"""

from dataclasses import dataclass
from uuid import UUID

from stock_kernel.domain.values import Role
from stock_kernel.exceptions import InsufficientRoleError, StoreAccessDeniedError


@dataclass(frozen=True)
class ActorContext:
    """
    Caller identity and scope.

    Contract:
        ``organization_id`` scopes every read and write.  ``store_ids``, when
        set, further restricts which stores the actor may touch.
    """

    actor_id: UUID
    organization_id: UUID
    role: Role = Role.STAFF
    store_ids: frozenset[UUID] | None = None

    def require_role(self, required: Role) -> None:
        if not Role(self.role).satisfies(required):
            raise InsufficientRoleError(
                actor_id=str(self.actor_id),
                role=Role(self.role).value,
                required_role=required.value,
            )

    def require_store(self, store_id: UUID) -> None:
        if self.store_ids is not None and store_id not in self.store_ids:
            raise StoreAccessDeniedError(actor_id=str(self.actor_id), store_id=str(store_id))

    def log_fields(self) -> dict[str, str]:
        return {
            "actor_id": str(self.actor_id),
            "organization_id": str(self.organization_id),
        }
