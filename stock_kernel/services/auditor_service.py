"""
AuditorService -- tamper-evident audit trail, one hash chain per organization.

Responsibility:
    Creates immutable, hash-chained audit events for every stock change,
    snapshot repair and purchase order transition.  Provides chain
    validation and per-entity traces for forensic review.

Architecture position:
    Kernel > Services.  Called by SnapshotProjector, InventoryService and
    PurchaseOrderService inside their unit of work.

Invariants enforced:
    - Sequence monotonicity per organization via SequenceService (the
      ``audit_event:<organization_id>`` counter row).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``; the first event of an organization has
      ``prev_hash`` None.
    - Append-only: AuditEvent rows are protected by ORM listeners.

Failure modes:
    - AuditChainBrokenError: a recomputed hash does not match the stored
      hash, or a prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the audit service.  Every peer service records through
    ``record()``, which enforces the chain link before persisting.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import AuditChainBrokenError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEvent
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events of one entity, in sequence order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(entry.action for entry in self.entries)


class AuditorService:
    """
    Create and validate tamper-evident audit events.

    Guarantees:
        - Payloads are stored in canonical JSON form, so the stored
          ``payload_hash`` can always be recomputed from the stored payload.
        - Concurrent writers for one organization are serialized by the
          locked sequence row; the predecessor hash is read after the lock.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self, organization_id: UUID) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.organization_id == organization_id)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def record(
        self,
        *,
        organization_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append one event to the organization's chain.

        Postconditions:
            - The new row is flushed with the next per-organization seq and
              ``prev_hash`` equal to the previous event's ``hash``.
        """
        seq = self._sequence_service.next_value(
            SequenceService.audit_sequence_name(organization_id)
        )
        prev_hash = self._get_last_hash(organization_id)

        # JSON round trip so Decimal/UUID/date values persist as strings
        payload_data = json.loads(canonicalize_json(payload or {}))
        payload_hash = hash_payload(payload_data)
        action = AuditAction(action)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            organization_id=organization_id,
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    # Domain-specific recording methods

    def record_stock_change(
        self,
        *,
        organization_id: UUID,
        movement_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        store_id: UUID,
        product_id: UUID,
        variant_key: str,
        movement_type: str,
        qty_delta: int,
        on_hand_before: int,
        on_hand_after: int,
        extra_payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Record one ledger movement with the before/after on-hand."""
        payload = {
            "store_id": store_id,
            "product_id": product_id,
            "variant_key": variant_key,
            "movement_type": movement_type,
            "qty_delta": qty_delta,
            "before": {"on_hand": on_hand_before},
            "after": {"on_hand": on_hand_after},
        }
        if extra_payload:
            payload.update(extra_payload)
        return self.record(
            organization_id=organization_id,
            entity_type="StockMovement",
            entity_id=movement_id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    def record_snapshot_recomputed(
        self,
        *,
        organization_id: UUID,
        snapshot_id: UUID,
        actor_id: UUID,
        store_id: UUID,
        product_id: UUID,
        variant_key: str,
        before: dict[str, int],
        after: dict[str, int],
    ) -> AuditEvent:
        return self.record(
            organization_id=organization_id,
            entity_type="InventorySnapshot",
            entity_id=snapshot_id,
            action=AuditAction.SNAPSHOT_RECOMPUTED,
            actor_id=actor_id,
            payload={
                "store_id": store_id,
                "product_id": product_id,
                "variant_key": variant_key,
                "before": before,
                "after": after,
            },
        )

    def record_purchase_order_transition(
        self,
        *,
        organization_id: UUID,
        purchase_order_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        from_status: str | None,
        to_status: str,
        extra_payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        payload: dict[str, Any] = {
            "before": {"status": from_status},
            "after": {"status": to_status},
        }
        if extra_payload:
            payload.update(extra_payload)
        return self.record(
            organization_id=organization_id,
            entity_type="PurchaseOrder",
            entity_id=purchase_order_id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    def record_purchase_order_rollback(
        self,
        *,
        organization_id: UUID,
        purchase_order_id: UUID,
        actor_id: UUID,
        from_status: str,
        reason: str,
        compensating_movement_ids: list[UUID],
        released_on_order: int,
    ) -> AuditEvent:
        return self.record(
            organization_id=organization_id,
            entity_type="PurchaseOrder",
            entity_id=purchase_order_id,
            action=AuditAction.PURCHASE_ORDER_ROLLED_BACK,
            actor_id=actor_id,
            payload={
                "before": {"status": from_status},
                "after": {"status": "CANCELLED"},
                "reason": reason,
                "compensating_movement_ids": compensating_movement_ids,
                "released_on_order": released_on_order,
            },
        )

    def record_stock_count_event(
        self,
        *,
        organization_id: UUID,
        stock_count_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        from_status: str | None,
        to_status: str,
        extra_payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        payload: dict[str, Any] = {
            "before": {"status": from_status},
            "after": {"status": to_status},
        }
        if extra_payload:
            payload.update(extra_payload)
        return self.record(
            organization_id=organization_id,
            entity_type="StockCount",
            entity_id=stock_count_id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    # Validation and trace

    def validate_chain(self, organization_id: UUID) -> bool:
        """
        Validate the organization's entire chain.

        Raises:
            AuditChainBrokenError: at the first event whose stored hash,
                payload hash or predecessor link does not match.
        """
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.organization_id == organization_id)
            .order_by(AuditEvent.seq)
        ).scalars().all()

        previous: AuditEvent | None = None
        for event in events:
            expected_prev = previous.hash if previous is not None else None
            if event.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "check": "prev_hash"},
                )
                raise AuditChainBrokenError(
                    str(event.id), expected_prev or "None", event.prev_hash or "None"
                )

            payload_hash = hash_payload(event.payload or {})
            if payload_hash != event.payload_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "check": "payload_hash"},
                )
                raise AuditChainBrokenError(str(event.id), payload_hash, event.payload_hash)

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "check": "hash"},
                )
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)
            previous = event

        logger.info(
            "audit_chain_valid",
            extra={"organization_id": str(organization_id), "event_count": len(events)},
        )
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=event.action,
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    payload=event.payload or {},
                    hash=event.hash,
                )
                for event in events
            ),
        )
