"""
Order intake: entry orders (inbound) and departure orders (outbound).

Entry orders must be APPROVED before any of their lines can be allocated;
departure orders must be APPROVED before stock can be reserved for them.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.config import Settings, settings as default_settings
from pharma_wms.database import atomic
from pharma_wms.core.enum_utils import status_in
from pharma_wms.core.exceptions import (
    ValidationError,
    EntryOrderNotFound,
    DepartureOrderNotFound,
    InvalidOrderState,
    PermissionDenied,
)
from pharma_wms.core.scope import Actor, ScopeFilter, QUALITY_ROLES, SUPERVISOR_ROLES
from pharma_wms.core.footprint import to_measure
from pharma_wms.models.departure import DepartureOrder, DepartureOrderLine, DepartureStatus
from pharma_wms.models.entry_order import EntryOrder, EntryOrderLine, ReviewStatus
from pharma_wms.schemas.orders import EntryOrderCreate, DepartureOrderCreate
from pharma_wms.services.audit_service import AuditService
from pharma_wms.services.document_sequence_service import DocumentSequenceService
from pharma_wms.services.warehouse_service import WarehouseService


logger = logging.getLogger(__name__)


# Review decisions an entry order can receive, by current status
REVIEWABLE_ENTRY_STATUSES = (ReviewStatus.PENDING, ReviewStatus.NEEDS_REVISION)
ENTRY_REVIEW_OUTCOMES = (ReviewStatus.APPROVED, ReviewStatus.REJECTED, ReviewStatus.NEEDS_REVISION)

APPROVABLE_DEPARTURE_STATUSES = (DepartureStatus.PENDING, DepartureStatus.REVISION)
DEPARTURE_DECISIONS = (DepartureStatus.APPROVED, DepartureStatus.REJECTED, DepartureStatus.REVISION)


class OrderService:

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.sequences = DocumentSequenceService(db, self.settings)
        self.audit = AuditService(db)

    # ==================== ENTRY ORDERS ====================

    async def get_entry_order(
        self,
        order_id: uuid.UUID,
        scope: ScopeFilter,
    ) -> Tuple[EntryOrder, List[EntryOrderLine]]:
        order = await self.db.get(EntryOrder, order_id)
        if not order:
            raise EntryOrderNotFound(
                f"Entry order {order_id} not found",
                details={"entry_order_id": str(order_id)},
            )
        scope.ensure_client(order.client_id, "entry order")
        result = await self.db.execute(
            select(EntryOrderLine)
            .where(EntryOrderLine.entry_order_id == order.id)
            .order_by(EntryOrderLine.lot_number, EntryOrderLine.id)
        )
        return order, list(result.scalars().all())

    async def create_entry_order(
        self,
        data: EntryOrderCreate,
        actor: Actor,
        scope: ScopeFilter,
    ) -> Tuple[EntryOrder, List[EntryOrderLine]]:
        """Register an inbound order with its lines; starts PENDING review."""
        scope.ensure_client(data.client_id, "entry order")
        await WarehouseService(self.db).get_warehouse(data.warehouse_id)

        async with atomic(self.db):
            order = EntryOrder(
                id=uuid.uuid4(),
                order_no=await self.sequences.get_next_number(self.settings.ENTRY_ORDER_PREFIX),
                client_id=data.client_id,
                warehouse_id=data.warehouse_id,
                review_status=ReviewStatus.PENDING.value,
                guide_number=data.guide_number,
                observations=data.observations,
                created_by=actor.user_id,
            )
            self.db.add(order)

            lines = []
            for item in data.lines:
                line = EntryOrderLine(
                    id=uuid.uuid4(),
                    entry_order_id=order.id,
                    product_id=item.product_id,
                    product_code=item.product_code,
                    lot_number=item.lot_number,
                    expiration_date=item.expiration_date,
                    manufacturing_date=item.manufacturing_date,
                    quantity=item.quantity,
                    packages=item.packages,
                    weight=to_measure(item.weight),
                    volume=to_measure(item.volume),
                    presentation=item.presentation.value,
                    received_at=item.received_at_or_now(),
                )
                self.db.add(line)
                lines.append(line)

        logger.info(f"Entry order {order.order_no} registered with {len(lines)} lines")
        return order, lines

    async def review_entry_order(
        self,
        order_id: uuid.UUID,
        review_status: str,
        actor: Actor,
        scope: ScopeFilter,
        comments: Optional[str] = None,
    ) -> EntryOrder:
        """Approve, reject or send back an entry order. Lines are frozen once approved."""
        if actor.role not in QUALITY_ROLES:
            raise PermissionDenied(
                "Only administrators, in-charges and pharmacists can review entry orders",
                details={"role": actor.role.value},
            )
        if not status_in(review_status, *ENTRY_REVIEW_OUTCOMES):
            raise ValidationError(
                f"Invalid review status '{review_status}'",
                details={"allowed": [s.value for s in ENTRY_REVIEW_OUTCOMES]},
            )

        async with atomic(self.db):
            result = await self.db.execute(
                select(EntryOrder)
                .where(EntryOrder.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            order = result.scalar_one_or_none()
            if not order:
                raise EntryOrderNotFound(
                    f"Entry order {order_id} not found",
                    details={"entry_order_id": str(order_id)},
                )
            scope.ensure_client(order.client_id, "entry order")
            if not status_in(order.review_status, *REVIEWABLE_ENTRY_STATUSES):
                raise InvalidOrderState(
                    f"Entry order {order.order_no} is already {order.review_status}",
                    details={"entry_order_id": str(order.id), "review_status": order.review_status},
                )

            old_status = order.review_status
            order.review_status = review_status
            order.review_comments = comments
            order.reviewed_by = actor.user_id
            order.reviewed_at = datetime.now(timezone.utc)

            await self.audit.log_order_status_changed(
                action="ENTRY_ORDER_REVIEWED",
                entity_type="ENTRY_ORDER",
                order_id=order.id,
                order_no=order.order_no,
                old_status=old_status,
                new_status=review_status,
                user_id=actor.user_id,
                comments=comments,
            )

        logger.info(f"Entry order {order.order_no} reviewed: {old_status} -> {review_status}")
        return order

    # ==================== DEPARTURE ORDERS ====================

    async def get_departure_order(
        self,
        order_id: uuid.UUID,
        scope: ScopeFilter,
    ) -> Tuple[DepartureOrder, List[DepartureOrderLine]]:
        order = await self.db.get(DepartureOrder, order_id)
        if not order:
            raise DepartureOrderNotFound(
                f"Departure order {order_id} not found",
                details={"departure_order_id": str(order_id)},
            )
        scope.ensure_client(order.client_id, "departure order")
        result = await self.db.execute(
            select(DepartureOrderLine)
            .where(DepartureOrderLine.departure_order_id == order.id)
            .order_by(DepartureOrderLine.id)
        )
        return order, list(result.scalars().all())

    async def create_departure_order(
        self,
        data: DepartureOrderCreate,
        actor: Actor,
        scope: ScopeFilter,
    ) -> Tuple[DepartureOrder, List[DepartureOrderLine]]:
        """Register an outbound order; starts PENDING approval."""
        scope.ensure_client(data.client_id, "departure order")
        await WarehouseService(self.db).get_warehouse(data.warehouse_id)

        async with atomic(self.db):
            order = DepartureOrder(
                id=uuid.uuid4(),
                order_no=await self.sequences.get_next_number(self.settings.DEPARTURE_ORDER_PREFIX),
                client_id=data.client_id,
                warehouse_id=data.warehouse_id,
                order_status=DepartureStatus.PENDING.value,
                destination_point=data.destination_point,
                transport_type=data.transport_type,
                observations=data.observations,
                created_by=actor.user_id,
            )
            self.db.add(order)

            lines = []
            for item in data.lines:
                line = DepartureOrderLine(
                    id=uuid.uuid4(),
                    departure_order_id=order.id,
                    product_id=item.product_id,
                    product_code=item.product_code,
                    requested_quantity=item.requested_quantity,
                    dispatched_quantity=0,
                )
                self.db.add(line)
                lines.append(line)

        logger.info(f"Departure order {order.order_no} registered with {len(lines)} lines")
        return order, lines

    async def approve_departure_order(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        scope: ScopeFilter,
        decision: str = DepartureStatus.APPROVED.value,
        comments: Optional[str] = None,
    ) -> DepartureOrder:
        """Approve, reject or send back a departure order."""
        if actor.role not in SUPERVISOR_ROLES:
            raise PermissionDenied(
                "Only administrators and warehouse in-charges can approve departures",
                details={"role": actor.role.value},
            )
        if not status_in(decision, *DEPARTURE_DECISIONS):
            raise ValidationError(
                f"Invalid decision '{decision}'",
                details={"allowed": [s.value for s in DEPARTURE_DECISIONS]},
            )

        async with atomic(self.db):
            result = await self.db.execute(
                select(DepartureOrder)
                .where(DepartureOrder.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            order = result.scalar_one_or_none()
            if not order:
                raise DepartureOrderNotFound(
                    f"Departure order {order_id} not found",
                    details={"departure_order_id": str(order_id)},
                )
            scope.ensure_client(order.client_id, "departure order")
            if not status_in(order.order_status, *APPROVABLE_DEPARTURE_STATUSES):
                raise InvalidOrderState(
                    f"Departure order {order.order_no} is {order.order_status}",
                    details={"departure_order_id": str(order.id), "order_status": order.order_status},
                )

            old_status = order.order_status
            order.order_status = decision
            if decision == DepartureStatus.APPROVED.value:
                order.approved_by = actor.user_id
                order.approved_at = datetime.now(timezone.utc)

            await self.audit.log_order_status_changed(
                action="DEPARTURE_ORDER_APPROVAL",
                entity_type="DEPARTURE_ORDER",
                order_id=order.id,
                order_no=order.order_no,
                old_status=old_status,
                new_status=decision,
                user_id=actor.user_id,
                comments=comments,
            )

        logger.info(f"Departure order {order.order_no}: {old_status} -> {decision}")
        return order
