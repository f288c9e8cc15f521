"""
Warehouse core error taxonomy.

Every rejection raised by the core carries a stable ``code``, a
human-readable ``message`` and a ``details`` dict with the figures a caller
needs to decide whether to retry, abort or ask a human:

    ValidationError        malformed or missing input, rejected before any write
    NotFoundError          unknown id
    BusinessRuleViolation  rule broken (quantity, state, scope); rolled back whole
    ConcurrencyConflict    state changed between read and write; re-read and retry

The API layer maps the families to HTTP status codes (see ``http_status``).
"""
from typing import Any, Dict, Optional


class WarehouseError(Exception):
    """Base exception for warehouse core errors."""

    code = "WAREHOUSE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "context": self.details,
        }


# ==================== VALIDATION ====================

class ValidationError(WarehouseError):
    code = "VALIDATION_ERROR"
    http_status = 422


# ==================== NOT FOUND ====================

class NotFoundError(WarehouseError):
    code = "NOT_FOUND"
    http_status = 404


class AllocationNotFound(NotFoundError):
    code = "ALLOCATION_NOT_FOUND"


class CellNotFound(NotFoundError):
    code = "CELL_NOT_FOUND"


class WarehouseNotFound(NotFoundError):
    code = "WAREHOUSE_NOT_FOUND"


class EntryOrderNotFound(NotFoundError):
    code = "ENTRY_ORDER_NOT_FOUND"


class EntryOrderLineNotFound(NotFoundError):
    code = "ENTRY_ORDER_LINE_NOT_FOUND"


class DepartureOrderNotFound(NotFoundError):
    code = "DEPARTURE_ORDER_NOT_FOUND"


class DepartureOrderLineNotFound(NotFoundError):
    code = "DEPARTURE_ORDER_LINE_NOT_FOUND"


# ==================== BUSINESS RULES ====================

class BusinessRuleViolation(WarehouseError):
    code = "BUSINESS_RULE_VIOLATION"
    http_status = 400


class NotApproved(BusinessRuleViolation):
    code = "NOT_APPROVED"


class CellUnavailable(BusinessRuleViolation):
    code = "CELL_UNAVAILABLE"


class CellCapacityExceeded(CellUnavailable):
    code = "CELL_CAPACITY_EXCEEDED"


class CellUsageUnderflow(BusinessRuleViolation):
    code = "CELL_USAGE_UNDERFLOW"


class QuantityExceedsRemaining(BusinessRuleViolation):
    code = "QUANTITY_EXCEEDS_REMAINING"


class InsufficientQuantity(BusinessRuleViolation):
    code = "INSUFFICIENT_QUANTITY"


class InvalidTransition(BusinessRuleViolation):
    code = "INVALID_TRANSITION"


class InvalidOrderState(BusinessRuleViolation):
    code = "INVALID_ORDER_STATE"


class PlanMismatch(BusinessRuleViolation):
    code = "PLAN_MISMATCH"


class AlreadyDispatched(BusinessRuleViolation):
    code = "ALREADY_DISPATCHED"


class InsufficientApprovedInventory(BusinessRuleViolation):
    code = "INSUFFICIENT_APPROVED_INVENTORY"


class ScopeDenied(BusinessRuleViolation):
    code = "SCOPE_DENIED"
    http_status = 403


class PermissionDenied(ScopeDenied):
    code = "PERMISSION_DENIED"


# ==================== CONCURRENCY ====================

class ConcurrencyConflict(WarehouseError):
    code = "CONCURRENCY_CONFLICT"
    http_status = 409


class AllocationMutatedSinceReservation(ConcurrencyConflict):
    code = "ALLOCATION_MUTATED_SINCE_RESERVATION"
