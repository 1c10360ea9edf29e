"""
SequenceService -- gap-tolerant monotonic counters on locked rows.

The audit chain numbers its events with one counter per organization
(``audit_event:<organization_id>``).  The counter row is locked for the rest
of the caller's transaction, so two writers in the same organization
serialize on it and never see the same value.  A rollback hands the value
back.
"""

from sqlalchemy import select

from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService):
    AUDIT_EVENT_PREFIX = "audit_event"

    @classmethod
    def audit_sequence_name(cls, organization_id: object) -> str:
        return f"{cls.AUDIT_EVENT_PREFIX}:{organization_id}"

    def next_value(self, sequence_name: str) -> int:
        """Increment the named counter (creating it at 0) and return the new value."""
        counter, created = self._get_or_create_locked(
            SequenceCounter, {"name": sequence_name}, {"current_value": 0}
        )
        counter.current_value += 1
        self.session.flush()
        if created:
            logger.debug("sequence_created", extra={"sequence_name": sequence_name})
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a counter never used."""
        return self.session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
