"""Warehouse, cell and client assignment schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import Field, field_validator

from pharma_wms.core.enum_utils import normalize_to_uppercase, VALID_CELL_ROLES
from pharma_wms.models.warehouse import CellRole
from pharma_wms.schemas.base import BaseCreateSchema, BaseResponseSchema


class WarehouseCreate(BaseCreateSchema):
    """
    New warehouse with a rectangular cell grid.

    rows x bays x positions cells are created; every cell in a bay listed in
    passage_bays is flagged as a passage.
    """
    name: str = Field(..., min_length=1, max_length=200)
    location: Optional[str] = Field(None, max_length=255)
    rows: List[str] = Field(..., min_length=1)
    bays: int = Field(..., ge=1, le=99)
    positions: int = Field(..., ge=1, le=99)
    passage_bays: List[int] = Field(default_factory=list)
    max_quantity: Optional[int] = Field(None, ge=0)
    max_packages: Optional[int] = Field(None, ge=0)
    max_weight: Optional[Decimal] = Field(None, ge=0)
    max_volume: Optional[Decimal] = Field(None, ge=0)

    @field_validator('rows')
    @classmethod
    def normalize_rows(cls, v):
        rows = [r.strip().upper() for r in v if r and r.strip()]
        if len(set(rows)) != len(rows):
            raise ValueError("Row labels must be unique")
        return rows


class WarehouseResponse(BaseResponseSchema):
    id: UUID
    name: str
    location: Optional[str] = None
    status: str
    created_at: datetime
    cell_count: int = 0


class CellResponse(BaseResponseSchema):
    id: UUID
    warehouse_id: UUID
    row: str
    bay: int
    position: int
    address: str
    cell_role: str
    is_passage: bool
    is_active: bool
    status: str
    max_quantity: Optional[int] = None
    max_packages: Optional[int] = None
    max_weight: Optional[Decimal] = None
    max_volume: Optional[Decimal] = None
    current_quantity: int
    current_packages: int
    current_weight: Decimal
    current_volume: Decimal
    version: int


class CellRoleChange(BaseCreateSchema):
    cell_role: CellRole
    reason: Optional[str] = None

    @field_validator('cell_role', mode='before')
    @classmethod
    def normalize_role(cls, v):
        return normalize_to_uppercase(v, VALID_CELL_ROLES)


class CellAssignmentCreate(BaseCreateSchema):
    client_id: UUID
    notes: Optional[str] = None


class CellAssignmentResponse(BaseResponseSchema):
    id: UUID
    client_id: UUID
    cell_id: UUID
    is_active: bool
    assigned_by: Optional[UUID] = None
    assigned_at: datetime
