"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger must tell apart "you sent bad input", "the business
rule said no", "you may not do that", "that thing does not exist" and
"the database was busy, try again".  Collapsing these into ValueError or
RuntimeError forces callers to parse messages, which breaks as soon as
wording changes.

Every exception therefore carries:
  1. a CODE class attribute (machine-readable, API-safe),
  2. a KIND class attribute (the taxonomy bucket clients switch on),
  3. structured DATA as instance attributes (not just a message string).

Example - handling by kind at the transport edge:

    try:
        inventory.adjust_stock(actor, ...)
    except StockKernelError as e:
        return {"error": e.code, "kind": e.kind.value}

Example - handling a specific conflict:

    except InsufficientStockError as e:
        notify(f"Only {e.on_hand} left in store {e.store_id}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- StockValidationError              kind=validation
    |   +-- InvalidQuantityError
    |   +-- SameStoreTransferError
    |   +-- MissingIdentifierError
    |   +-- NegativeUnitCostError
    |   +-- EmptyPurchaseOrderError
    |   +-- EmptyReceiveRequestError
    |   +-- MissingSupplierError
    |   +-- ScanValueRequiredError
    |   +-- AmbiguousScanError
    |   +-- StockCountStoreMismatchError
    |
    +-- StockConflictError                kind=conflict
    |   +-- InsufficientStockError
    |   +-- InsufficientLotStockError
    |   +-- OverReceiveError
    |   +-- InvalidTransitionError
    |   +-- PurchaseOrderNotEditableError
    |   +-- DuplicateLineError
    |   +-- OnOrderUnderflowError
    |   +-- IdempotencyKeyReuseError
    |   +-- RequestInProgressError
    |   +-- NegativeSnapshotError
    |   +-- StockCountLockedError
    |   +-- StockCountCodeExhaustedError
    |
    +-- StockForbiddenError               kind=forbidden
    |   +-- InsufficientRoleError
    |   +-- StoreAccessDeniedError
    |
    +-- StockNotFoundError                kind=not_found
    |   +-- StoreNotFoundError
    |   +-- ProductNotFoundError
    |   +-- VariantNotFoundError
    |   +-- PackNotFoundError
    |   +-- SupplierNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- PurchaseOrderLineNotFoundError
    |   +-- LotNotFoundError
    |   +-- ScanNotFoundError
    |   +-- StockCountNotFoundError
    |   +-- StockCountLineNotFoundError
    |
    +-- TransientStorageError             kind=transient
    |
    +-- StockIntegrityError               kind=integrity
        +-- ImmutabilityViolationError
        +-- AuditChainBrokenError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Cross-tenant references raise the NotFound class of the entity, never
   Forbidden, so the existence of another organization's rows never leaks.

2. Negative-stock and over-receive are CONFLICTS, not validation errors:
   the input was well-formed, the current state said no.

3. TransientStorageError is raised only by the unit of work when the
   database reports contention.  Callers retry with the SAME idempotency key.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Taxonomy bucket surfaced to callers."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    INTEGRITY = "integrity"


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses carry a `code` and a `kind` class attribute.
    """

    code: str = "STOCK_KERNEL_ERROR"
    kind: ErrorKind = ErrorKind.INTEGRITY


# Validation


class StockValidationError(StockKernelError):
    """Base exception for malformed input the caller can fix."""

    code: str = "VALIDATION_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION


class InvalidQuantityError(StockValidationError):
    """Quantity is zero, negative where positive is required, or not an integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class SameStoreTransferError(StockValidationError):
    """Transfer source and destination are the same store."""

    code: str = "SAME_STORE_TRANSFER"

    def __init__(self, store_id: str):
        self.store_id = store_id
        super().__init__(f"Cannot transfer within the same store {store_id}")


class MissingIdentifierError(StockValidationError):
    """A required identifier was not supplied."""

    code: str = "MISSING_IDENTIFIER"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required identifier: {field}")


class NegativeUnitCostError(StockValidationError):
    """Unit cost supplied on a receipt is negative."""

    code: str = "NEGATIVE_UNIT_COST"

    def __init__(self, unit_cost: str):
        self.unit_cost = unit_cost
        super().__init__(f"Unit cost must not be negative: {unit_cost}")


class EmptyPurchaseOrderError(StockValidationError):
    """Purchase order has no lines."""

    code: str = "PURCHASE_ORDER_EMPTY"

    def __init__(self, purchase_order_id: str):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order {purchase_order_id} has no lines")


class EmptyReceiveRequestError(StockValidationError):
    """Receive request resolves to nothing to receive."""

    code: str = "EMPTY_RECEIVE_REQUEST"

    def __init__(self, purchase_order_id: str):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Nothing to receive on purchase order {purchase_order_id}")


class MissingSupplierError(StockValidationError):
    """Reorder item has no supplier and the product has no default supplier."""

    code: str = "MISSING_SUPPLIER"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"No supplier for product {product_id}")


class ScanValueRequiredError(StockValidationError):
    """Scanned barcode or SKU is empty."""

    code: str = "SCAN_VALUE_REQUIRED"

    def __init__(self):
        super().__init__("Scan value must not be empty")


class AmbiguousScanError(StockValidationError):
    """Scanned value matches more than one variant."""

    code: str = "SCAN_AMBIGUOUS"

    def __init__(self, value: str, match_count: int):
        self.value = value
        self.match_count = match_count
        super().__init__(f"Scan {value!r} matches {match_count} variants")


class StockCountStoreMismatchError(StockValidationError):
    """Scan was submitted for a store other than the count's store."""

    code: str = "STOCK_COUNT_STORE_MISMATCH"

    def __init__(self, stock_count_id: str, store_id: str):
        self.stock_count_id = stock_count_id
        self.store_id = store_id
        super().__init__(f"Stock count {stock_count_id} does not belong to store {store_id}")


# Conflicts


class StockConflictError(StockKernelError):
    """Base exception for expected business-rule violations."""

    code: str = "CONFLICT"
    kind: ErrorKind = ErrorKind.CONFLICT


class InsufficientStockError(StockConflictError):
    """Movement would drive on-hand below zero in a store that forbids it."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        store_id: str,
        product_id: str,
        variant_key: str,
        on_hand: int,
        qty_delta: int,
    ):
        self.store_id = store_id
        self.product_id = product_id
        self.variant_key = variant_key
        self.on_hand = on_hand
        self.qty_delta = qty_delta
        super().__init__(
            f"Insufficient stock for {product_id}/{variant_key} in store {store_id}: "
            f"on_hand={on_hand}, delta={qty_delta}"
        )


class InsufficientLotStockError(StockConflictError):
    """Lot quantity would go below zero in a store that forbids negative stock."""

    code: str = "INSUFFICIENT_LOT_STOCK"

    def __init__(self, store_id: str, product_id: str, expiry_date: str, on_hand_qty: int, qty_delta: int):
        self.store_id = store_id
        self.product_id = product_id
        self.expiry_date = expiry_date
        self.on_hand_qty = on_hand_qty
        self.qty_delta = qty_delta
        super().__init__(
            f"Insufficient lot stock for {product_id} expiring {expiry_date} "
            f"in store {store_id}: lot={on_hand_qty}, delta={qty_delta}"
        )


class OverReceiveError(StockConflictError):
    """Receipt exceeds remaining quantity on a line without override."""

    code: str = "OVER_RECEIVE"

    def __init__(self, line_id: str, remaining: int, requested: int):
        self.line_id = line_id
        self.remaining = remaining
        self.requested = requested
        super().__init__(
            f"Over-receive on line {line_id}: remaining={remaining}, requested={requested}"
        )


class InvalidTransitionError(StockConflictError):
    """Purchase order status transition is not allowed."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, purchase_order_id: str, from_status: str, to_status: str):
        self.purchase_order_id = purchase_order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Purchase order {purchase_order_id} cannot move from {from_status} to {to_status}"
        )


class PurchaseOrderNotEditableError(StockConflictError):
    """Lines can only be edited while the order is a draft."""

    code: str = "PURCHASE_ORDER_NOT_EDITABLE"

    def __init__(self, purchase_order_id: str, status: str):
        self.purchase_order_id = purchase_order_id
        self.status = status
        super().__init__(f"Purchase order {purchase_order_id} is {status}, not editable")


class DuplicateLineError(StockConflictError):
    """Same product/variant appears twice on one purchase order."""

    code: str = "DUPLICATE_LINE"

    def __init__(self, product_id: str, variant_key: str):
        self.product_id = product_id
        self.variant_key = variant_key
        super().__init__(f"Duplicate purchase order line for {product_id}/{variant_key}")


class OnOrderUnderflowError(StockConflictError):
    """On-order quantity would go below zero."""

    code: str = "ON_ORDER_UNDERFLOW"

    def __init__(self, store_id: str, product_id: str, variant_key: str, on_order: int, delta: int):
        self.store_id = store_id
        self.product_id = product_id
        self.variant_key = variant_key
        self.on_order = on_order
        self.delta = delta
        super().__init__(
            f"On-order underflow for {product_id}/{variant_key} in store {store_id}: "
            f"on_order={on_order}, delta={delta}"
        )


class IdempotencyKeyReuseError(StockConflictError):
    """Idempotency key was already used for a different request."""

    code: str = "IDEMPOTENCY_KEY_REUSE"

    def __init__(self, scope: str, key: str, expected_hash: str, received_hash: str):
        self.scope = scope
        self.key = key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {key} for {scope} was used with a different request"
        )


class RequestInProgressError(StockConflictError):
    """Idempotency key exists but its operation has not recorded a result."""

    code: str = "REQUEST_IN_PROGRESS"

    def __init__(self, scope: str, key: str):
        self.scope = scope
        self.key = key
        super().__init__(f"Request {key} for {scope} is still in progress")


class NegativeSnapshotError(StockConflictError):
    """Ledger sum is negative in a store that forbids negative stock."""

    code: str = "NEGATIVE_SNAPSHOT"

    def __init__(self, store_id: str, product_id: str, variant_key: str, on_hand: int):
        self.store_id = store_id
        self.product_id = product_id
        self.variant_key = variant_key
        self.on_hand = on_hand
        super().__init__(
            f"Ledger sum for {product_id}/{variant_key} in store {store_id} "
            f"is negative ({on_hand}) but negative stock is not allowed"
        )


class StockCountLockedError(StockConflictError):
    """Stock count is applied or cancelled and can no longer change."""

    code: str = "STOCK_COUNT_LOCKED"

    def __init__(self, stock_count_id: str, status: str):
        self.stock_count_id = stock_count_id
        self.status = status
        super().__init__(f"Stock count {stock_count_id} is {status}")


class StockCountCodeExhaustedError(StockConflictError):
    """No free stock count code was found within the allowed attempts."""

    code: str = "STOCK_COUNT_CODE_EXHAUSTED"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"No unique stock count code after {attempts} attempts")


# Forbidden


class StockForbiddenError(StockKernelError):
    """Base exception for actor permission failures."""

    code: str = "FORBIDDEN"
    kind: ErrorKind = ErrorKind.FORBIDDEN


class InsufficientRoleError(StockForbiddenError):
    """Actor role ranks below the required role."""

    code: str = "INSUFFICIENT_ROLE"

    def __init__(self, actor_id: str, role: str, required_role: str):
        self.actor_id = actor_id
        self.role = role
        self.required_role = required_role
        super().__init__(f"Actor {actor_id} with role {role} requires {required_role}")


class StoreAccessDeniedError(StockForbiddenError):
    """Actor is scoped to a set of stores that excludes this one."""

    code: str = "STORE_ACCESS_DENIED"

    def __init__(self, actor_id: str, store_id: str):
        self.actor_id = actor_id
        self.store_id = store_id
        super().__init__(f"Actor {actor_id} has no access to store {store_id}")


# Not found


class StockNotFoundError(StockKernelError):
    """Base exception for missing (or foreign-tenant) references."""

    code: str = "NOT_FOUND"
    kind: ErrorKind = ErrorKind.NOT_FOUND
    entity_type: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class StoreNotFoundError(StockNotFoundError):
    code: str = "STORE_NOT_FOUND"
    entity_type = "Store"


class ProductNotFoundError(StockNotFoundError):
    code: str = "PRODUCT_NOT_FOUND"
    entity_type = "Product"


class VariantNotFoundError(StockNotFoundError):
    code: str = "VARIANT_NOT_FOUND"
    entity_type = "ProductVariant"


class PackNotFoundError(StockNotFoundError):
    code: str = "PACK_NOT_FOUND"
    entity_type = "ProductPack"


class SupplierNotFoundError(StockNotFoundError):
    code: str = "SUPPLIER_NOT_FOUND"
    entity_type = "Supplier"


class PurchaseOrderNotFoundError(StockNotFoundError):
    code: str = "PURCHASE_ORDER_NOT_FOUND"
    entity_type = "PurchaseOrder"


class PurchaseOrderLineNotFoundError(StockNotFoundError):
    code: str = "PURCHASE_ORDER_LINE_NOT_FOUND"
    entity_type = "PurchaseOrderLine"


class LotNotFoundError(StockNotFoundError):
    code: str = "LOT_NOT_FOUND"
    entity_type = "StockLot"


class ScanNotFoundError(StockNotFoundError):
    code: str = "SCAN_NOT_FOUND"
    entity_type = "Barcode or SKU"


class StockCountNotFoundError(StockNotFoundError):
    code: str = "STOCK_COUNT_NOT_FOUND"
    entity_type = "StockCount"


class StockCountLineNotFoundError(StockNotFoundError):
    code: str = "STOCK_COUNT_LINE_NOT_FOUND"
    entity_type = "StockCountLine"


# Transient


class TransientStorageError(StockKernelError):
    """
    Storage-level contention (serialization failure, deadlock, lock timeout).

    Safe to retry with the same idempotency key.
    """

    code: str = "TRANSIENT_STORAGE_ERROR"
    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Transient storage error, retry the request: {reason}")


# Integrity


class StockIntegrityError(StockKernelError):
    """Base exception for tamper or append-only violations."""

    code: str = "INTEGRITY_ERROR"
    kind: ErrorKind = ErrorKind.INTEGRITY


class ImmutabilityViolationError(StockIntegrityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(StockIntegrityError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
