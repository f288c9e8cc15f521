# Services module
from pharma_wms.services.audit_service import AuditService
from pharma_wms.services.cell_ledger_service import CellLedgerService
from pharma_wms.services.inventory_audit_service import InventoryAuditService
from pharma_wms.services.inventory_delta_service import InventoryDeltaService, StockPosition
from pharma_wms.services.document_sequence_service import DocumentSequenceService
from pharma_wms.services.warehouse_service import WarehouseService
from pharma_wms.services.order_service import OrderService

# Core stock operations
from pharma_wms.services.allocation_service import AllocationService
from pharma_wms.services.quality_control_service import QualityControlService, TransitionResult
from pharma_wms.services.fifo_service import FifoSelector, FifoPlan, FifoPick
from pharma_wms.services.departure_service import DepartureService

# Read side
from pharma_wms.services.inventory_view_service import InventoryViewService
from pharma_wms.services.integrity_service import InventoryIntegrityService, IntegrityIssue

__all__ = [
    "AuditService",
    "CellLedgerService",
    "InventoryAuditService",
    "InventoryDeltaService",
    "StockPosition",
    "DocumentSequenceService",
    "WarehouseService",
    "OrderService",
    # Core
    "AllocationService",
    "QualityControlService",
    "TransitionResult",
    "FifoSelector",
    "FifoPlan",
    "FifoPick",
    "DepartureService",
    # Read side
    "InventoryViewService",
    "InventoryIntegrityService",
    "IntegrityIssue",
]
