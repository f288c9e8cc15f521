"""Entry and departure order schemas."""
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import Field, field_validator

from pharma_wms.core.enum_utils import normalize_to_uppercase, VALID_REVIEW_STATUSES
from pharma_wms.models.entry_order import PresentationType
from pharma_wms.schemas.base import BaseCreateSchema, BaseResponseSchema


# ============================================================================
# ENTRY ORDERS
# ============================================================================

class EntryOrderLineCreate(BaseCreateSchema):
    product_id: UUID
    product_code: Optional[str] = Field(None, max_length=50)
    lot_number: str = Field(..., min_length=1, max_length=50)
    expiration_date: Optional[date] = None
    manufacturing_date: Optional[date] = None
    quantity: int = Field(..., gt=0)
    packages: int = Field(0, ge=0)
    weight: Decimal = Field(Decimal("0"), ge=0)
    volume: Decimal = Field(Decimal("0"), ge=0)
    presentation: PresentationType = PresentationType.CAJA
    received_at: Optional[datetime] = None

    @field_validator('presentation', mode='before')
    @classmethod
    def normalize_presentation(cls, v):
        return normalize_to_uppercase(v, {p.value for p in PresentationType})

    def received_at_or_now(self) -> datetime:
        return self.received_at or datetime.now(timezone.utc)


class EntryOrderCreate(BaseCreateSchema):
    client_id: UUID
    warehouse_id: UUID
    guide_number: Optional[str] = Field(None, max_length=50)
    observations: Optional[str] = None
    lines: List[EntryOrderLineCreate] = Field(..., min_length=1)


class EntryOrderReview(BaseCreateSchema):
    review_status: str = Field(..., description="APPROVED, REJECTED or NEEDS_REVISION")
    comments: Optional[str] = None

    @field_validator('review_status', mode='before')
    @classmethod
    def normalize_review_status(cls, v):
        return normalize_to_uppercase(v, VALID_REVIEW_STATUSES)


class EntryOrderLineResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    product_code: Optional[str] = None
    lot_number: str
    expiration_date: Optional[date] = None
    quantity: int
    packages: int
    weight: Decimal
    volume: Decimal
    presentation: str
    received_at: datetime


class EntryOrderResponse(BaseResponseSchema):
    id: UUID
    order_no: str
    client_id: UUID
    warehouse_id: UUID
    review_status: str
    review_comments: Optional[str] = None
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    guide_number: Optional[str] = None
    registered_at: datetime
    lines: List[EntryOrderLineResponse] = []


# ============================================================================
# DEPARTURE ORDERS
# ============================================================================

class DepartureOrderLineCreate(BaseCreateSchema):
    product_id: UUID
    product_code: Optional[str] = Field(None, max_length=50)
    requested_quantity: int = Field(..., gt=0)


class DepartureOrderCreate(BaseCreateSchema):
    client_id: UUID
    warehouse_id: UUID
    destination_point: Optional[str] = Field(None, max_length=255)
    transport_type: Optional[str] = Field(None, max_length=50)
    observations: Optional[str] = None
    lines: List[DepartureOrderLineCreate] = Field(..., min_length=1)


class DepartureOrderApproval(BaseCreateSchema):
    decision: str = Field("APPROVED", description="APPROVED, REJECTED or REVISION")
    comments: Optional[str] = None

    @field_validator('decision', mode='before')
    @classmethod
    def normalize_decision(cls, v):
        return normalize_to_uppercase(v, {"APPROVED", "REJECTED", "REVISION"})


class DepartureOrderLineResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    product_code: Optional[str] = None
    requested_quantity: int
    dispatched_quantity: int


class DepartureOrderResponse(BaseResponseSchema):
    id: UUID
    order_no: str
    client_id: UUID
    warehouse_id: UUID
    order_status: str
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    dispatched_by: Optional[UUID] = None
    dispatched_at: Optional[datetime] = None
    registered_at: datetime
    lines: List[DepartureOrderLineResponse] = []


class DispatchResponse(BaseCreateSchema):
    departure_order_id: UUID
    order_status: str
