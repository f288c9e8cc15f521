"""
Quality-Control State Machine

This module is the SINGLE SOURCE OF TRUTH for allocation quality-status
transitions. QualityControlService validates every change through it.

    QUARANTINE ──► APPROVED
        │     ├──► RETURNS
        │     ├──► SAMPLES
        │     └──► REJECTED
    APPROVED ──► REJECTED / RETURNS   (recall, only when enabled)
"""

from typing import Dict, List, FrozenSet

from pharma_wms.core.exceptions import InvalidTransition
from pharma_wms.models.inventory import QualityStatus
from pharma_wms.models.warehouse import CellRole


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
QC_TRANSITIONS: Dict[str, List[str]] = {
    QualityStatus.QUARANTINE.value: [
        QualityStatus.APPROVED.value,   # Released for dispatch
        QualityStatus.RETURNS.value,    # Sent back to supplier/client
        QualityStatus.SAMPLES.value,    # Kept as counter-samples
        QualityStatus.REJECTED.value,   # Failed inspection
    ],
    QualityStatus.APPROVED.value: [],
    QualityStatus.RETURNS.value: [],    # Terminal
    QualityStatus.SAMPLES.value: [],    # Terminal
    QualityStatus.REJECTED.value: [],   # Terminal
}

# Opt-in product recall (QC_ALLOW_RECALL_FROM_APPROVED)
RECALL_TRANSITIONS: Dict[str, List[str]] = {
    QualityStatus.APPROVED.value: [
        QualityStatus.REJECTED.value,
        QualityStatus.RETURNS.value,
    ],
}

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (QualityStatus.QUARANTINE.value, QualityStatus.APPROVED.value): "Release",
    (QualityStatus.QUARANTINE.value, QualityStatus.RETURNS.value): "Return",
    (QualityStatus.QUARANTINE.value, QualityStatus.SAMPLES.value): "Retain Samples",
    (QualityStatus.QUARANTINE.value, QualityStatus.REJECTED.value): "Reject",
    (QualityStatus.APPROVED.value, QualityStatus.REJECTED.value): "Recall and Reject",
    (QualityStatus.APPROVED.value, QualityStatus.RETURNS.value): "Recall and Return",
}

# Cell role a destination cell must carry to hold stock in a status
CELL_ROLES_FOR_STATUS: Dict[str, FrozenSet[str]] = {
    QualityStatus.QUARANTINE.value: frozenset({CellRole.STANDARD.value}),
    QualityStatus.APPROVED.value: frozenset({CellRole.STANDARD.value}),
    QualityStatus.RETURNS.value: frozenset({CellRole.RETURNS.value}),
    QualityStatus.SAMPLES.value: frozenset({CellRole.SAMPLES.value}),
    QualityStatus.REJECTED.value: frozenset({CellRole.REJECTED.value}),
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_allowed_transitions(current_status: str, allow_recall: bool = False) -> List[str]:
    allowed = list(QC_TRANSITIONS.get(current_status, []))
    if allow_recall:
        allowed.extend(RECALL_TRANSITIONS.get(current_status, []))
    return allowed


def can_transition(current_status: str, new_status: str, allow_recall: bool = False) -> bool:
    return new_status in get_allowed_transitions(current_status, allow_recall)


def get_transition_action(current_status: str, new_status: str) -> str:
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def cell_role_accepts(cell_role: str, quality_status: str) -> bool:
    return cell_role in CELL_ROLES_FOR_STATUS.get(quality_status, frozenset())


def statuses_for_cell_role(cell_role: str) -> List[str]:
    """Quality statuses a cell with this role may hold."""
    return [status for status, roles in CELL_ROLES_FOR_STATUS.items() if cell_role in roles]


def validate_transition(current_status: str, new_status: str, allow_recall: bool = False) -> None:
    """Raise InvalidTransition unless current_status -> new_status is allowed."""
    if can_transition(current_status, new_status, allow_recall):
        return

    allowed = get_allowed_transitions(current_status, allow_recall)
    details = {
        "from_status": current_status,
        "to_status": new_status,
        "allowed": allowed,
    }
    if not allowed:
        raise InvalidTransition(
            f"Allocation in '{current_status}' cannot change quality status. This is a terminal state.",
            details=details,
        )
    raise InvalidTransition(
        f"Cannot change allocation from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        details=details,
    )
