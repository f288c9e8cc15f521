from pharma_wms.models.warehouse import (
    Warehouse,
    WarehouseCell,
    ClientCellAssignment,
    CellRole,
    CellStatus,
)
from pharma_wms.models.entry_order import (
    EntryOrder,
    EntryOrderLine,
    ReviewStatus,
    PresentationType,
)
from pharma_wms.models.inventory import (
    InventoryAllocation,
    InventoryRecord,
    QualityControlTransition,
    QualityStatus,
    LifecycleStatus,
    InventoryStatus,
    QUALITY_TO_INVENTORY_STATUS,
)
from pharma_wms.models.departure import (
    DepartureOrder,
    DepartureOrderLine,
    DepartureAllocation,
    DepartureStatus,
    DepartureAllocationStatus,
)
from pharma_wms.models.audit_log import InventoryLog, AuditLog, MovementType
from pharma_wms.models.document_sequence import DocumentSequence

__all__ = [
    # Warehouse
    "Warehouse",
    "WarehouseCell",
    "ClientCellAssignment",
    "CellRole",
    "CellStatus",
    # Entry orders
    "EntryOrder",
    "EntryOrderLine",
    "ReviewStatus",
    "PresentationType",
    # Inventory
    "InventoryAllocation",
    "InventoryRecord",
    "QualityControlTransition",
    "QualityStatus",
    "LifecycleStatus",
    "InventoryStatus",
    "QUALITY_TO_INVENTORY_STATUS",
    # Departure
    "DepartureOrder",
    "DepartureOrderLine",
    "DepartureAllocation",
    "DepartureStatus",
    "DepartureAllocationStatus",
    # Audit
    "InventoryLog",
    "AuditLog",
    "MovementType",
    "DocumentSequence",
]
