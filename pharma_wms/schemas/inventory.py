"""Allocation, quality control, reservation and inventory view schemas."""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from pharma_wms.core.enum_utils import normalize_to_uppercase, VALID_QUALITY_STATUSES
from pharma_wms.models.inventory import QualityStatus
from pharma_wms.schemas.base import BaseCreateSchema, BaseResponseSchema


# ============================================================================
# ALLOCATIONS
# ============================================================================

class AllocationCreate(BaseCreateSchema):
    entry_order_line_id: UUID
    cell_id: UUID
    quantity: int = Field(..., gt=0)
    packages: int = Field(0, ge=0)
    weight: Decimal = Field(Decimal("0"), ge=0)
    volume: Decimal = Field(Decimal("0"), ge=0)
    operation_id: Optional[UUID] = Field(None, description="Idempotency key; replays return the first result")
    guide_number: Optional[str] = Field(None, max_length=50)
    observations: Optional[str] = None


class AllocationResponse(BaseResponseSchema):
    id: UUID
    entry_order_id: UUID
    entry_order_line_id: UUID
    parent_allocation_id: Optional[UUID] = None
    client_id: UUID
    product_id: UUID
    lot_number: str
    expiration_date: Optional[date] = None
    received_at: datetime
    warehouse_id: UUID
    cell_id: UUID
    allocated_quantity: int
    allocated_packages: int
    allocated_weight: Decimal
    allocated_volume: Decimal
    remaining_quantity: int
    remaining_packages: int
    remaining_weight: Decimal
    remaining_volume: Decimal
    quality_status: str
    lifecycle_status: str
    version: int


# ============================================================================
# QUALITY CONTROL
# ============================================================================

class TransitionRequest(BaseCreateSchema):
    allocation_id: UUID
    to_status: QualityStatus
    quantity: int = Field(..., gt=0)
    new_cell_id: Optional[UUID] = None
    reason: Optional[str] = None
    expected_version: Optional[int] = None
    packages: Optional[int] = Field(None, ge=0)
    weight: Optional[Decimal] = Field(None, ge=0)
    volume: Optional[Decimal] = Field(None, ge=0)

    @field_validator('to_status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        return normalize_to_uppercase(v, VALID_QUALITY_STATUSES)


class TransitionRecordResponse(BaseResponseSchema):
    id: UUID
    allocation_id: UUID
    new_allocation_id: Optional[UUID] = None
    product_id: UUID
    from_status: str
    to_status: str
    quantity_moved: int
    packages_moved: int
    weight_moved: Decimal
    volume_moved: Decimal
    from_cell_id: UUID
    to_cell_id: UUID
    reason: Optional[str] = None
    performed_by: UUID
    performed_at: datetime


class TransitionResponse(BaseModel):
    updated_allocation: AllocationResponse
    new_allocation: Optional[AllocationResponse] = None
    transition_record: TransitionRecordResponse


# ============================================================================
# FIFO / RESERVATIONS
# ============================================================================

class FifoPickSchema(BaseResponseSchema):
    allocation_id: UUID
    quantity: int = Field(..., gt=0)
    cell_id: Optional[UUID] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[date] = None
    available: int = 0


class FifoPlanResponse(BaseResponseSchema):
    product_id: UUID
    requested_quantity: int
    picks: List[FifoPickSchema]
    shortfall: int


class ReservationRequest(BaseCreateSchema):
    """Explicit plan; omit picks to let the service plan FIFO."""
    picks: Optional[List[FifoPickSchema]] = None


class DepartureAllocationResponse(BaseResponseSchema):
    id: UUID
    departure_order_id: UUID
    departure_order_line_id: UUID
    source_allocation_id: UUID
    cell_id: UUID
    reserved_quantity: int
    reserved_packages: int
    reserved_weight: Decimal
    reserved_volume: Decimal
    status: str
    reserved_by: UUID
    reserved_at: datetime
    dispatched_at: Optional[datetime] = None


# ============================================================================
# READ VIEWS
# ============================================================================

class InventoryRecordResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    warehouse_id: UUID
    cell_id: UUID
    quality_status: str
    status: str
    current_quantity: int
    current_packages: int
    current_weight: Decimal
    current_volume: Decimal


class AllocationsByQualityResponse(BaseModel):
    groups: Dict[str, List[AllocationResponse]]


class InventoryLogResponse(BaseResponseSchema):
    id: UUID
    operation_id: UUID
    user_id: UUID
    movement_type: str
    product_id: UUID
    allocation_id: UUID
    cell_id: UUID
    quantity_change: int
    package_change: int
    weight_change: Decimal
    volume_change: Decimal
    quantity_moved: int
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    from_cell_id: Optional[UUID] = None
    to_cell_id: Optional[UUID] = None
    departure_allocation_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class IntegrityIssueResponse(BaseModel):
    kind: str
    entity_id: UUID
    expected: Dict[str, str]
    actual: Dict[str, str]
