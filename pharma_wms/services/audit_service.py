from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.models.audit_log import AuditLog


class AuditService:
    """
    Entity-level audit trail: cell role changes, client cell assignments,
    order reviews. Quantity movements go to the inventory log instead.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry inside the caller's transaction.

        Args:
            action: The action performed (CELL_ROLE_CHANGE, ENTRY_ORDER_REVIEWED, ...)
            entity_type: Type of entity (WAREHOUSE_CELL, ENTRY_ORDER, ...)
            entity_id: ID of the affected entity
            user_id: ID of the user performing the action
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            description: Human-readable description
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def log_cell_role_changed(
        self,
        cell_id: uuid.UUID,
        address: str,
        old_role: str,
        new_role: str,
        user_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> AuditLog:
        return await self.log(
            action="CELL_ROLE_CHANGE",
            entity_type="WAREHOUSE_CELL",
            entity_id=cell_id,
            user_id=user_id,
            old_values={"cell_role": old_role},
            new_values={"cell_role": new_role, "reason": reason},
            description=f"Cell {address} role changed from {old_role} to {new_role}",
        )

    async def log_order_status_changed(
        self,
        action: str,
        entity_type: str,
        order_id: uuid.UUID,
        order_no: str,
        old_status: str,
        new_status: str,
        user_id: Optional[uuid.UUID] = None,
        comments: Optional[str] = None,
    ) -> AuditLog:
        return await self.log(
            action=action,
            entity_type=entity_type,
            entity_id=order_id,
            user_id=user_id,
            old_values={"status": old_status},
            new_values={"status": new_status, "comments": comments},
            description=f"{order_no}: {old_status} -> {new_status}",
        )

    async def get_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[AuditLog]:
        """Get audit logs, newest first."""
        query = select(AuditLog)

        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.where(AuditLog.entity_id == entity_id)
        if action:
            query = query.where(AuditLog.action == action)

        query = query.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
