from fastapi import APIRouter

from pharma_wms.api.v1.endpoints import (
    # Warehouse set-up
    warehouses,
    # Order intake
    entry_orders,
    departure_orders,
    # Stock
    allocations,
    quality_control,
    inventory,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Warehouses & Cells ====================
api_router.include_router(
    warehouses.router,
    prefix="/warehouses",
    tags=["Warehouses"]
)

# ==================== Entry Orders ====================
api_router.include_router(
    entry_orders.router,
    prefix="/entry-orders",
    tags=["Entry Orders"]
)

# ==================== Allocations ====================
api_router.include_router(
    allocations.router,
    prefix="/allocations",
    tags=["Allocations"]
)

# ==================== Quality Control ====================
api_router.include_router(
    quality_control.router,
    prefix="/quality-control",
    tags=["Quality Control"]
)

# ==================== Departure Orders ====================
api_router.include_router(
    departure_orders.router,
    prefix="/departure-orders",
    tags=["Departure Orders"]
)

# ==================== Inventory ====================
api_router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["Inventory"]
)
