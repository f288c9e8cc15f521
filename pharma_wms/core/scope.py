"""
Actor identity and data scope.

The core never resolves identities itself: an upstream gateway authenticates
the caller and hands over an ``Actor``. Every core operation receives the
actor's ``ScopeFilter`` explicitly instead of comparing role names inline.

    scope = ScopeFilter.for_actor(actor)
    scope.allows_client(entry_order.client_id)
    query = scope.apply(query, EntryOrder.client_id)
"""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from pharma_wms.core.exceptions import ScopeDenied


class ActorRole(str, Enum):
    """Warehouse operator roles."""
    ADMIN = "ADMIN"
    WAREHOUSE_INCHARGE = "WAREHOUSE_INCHARGE"
    PHARMACIST = "PHARMACIST"
    WAREHOUSE_ASSISTANT = "WAREHOUSE_ASSISTANT"
    CLIENT = "CLIENT"


# Roles allowed to move stock between quality states
QUALITY_ROLES = frozenset({
    ActorRole.ADMIN,
    ActorRole.WAREHOUSE_INCHARGE,
    ActorRole.PHARMACIST,
})

# Roles allowed to approve orders and dispatch
SUPERVISOR_ROLES = frozenset({
    ActorRole.ADMIN,
    ActorRole.WAREHOUSE_INCHARGE,
})


@dataclass(frozen=True)
class Actor:
    """An already-authenticated caller."""
    user_id: uuid.UUID
    role: ActorRole
    client_ids: FrozenSet[uuid.UUID] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        user_id: uuid.UUID,
        role: str,
        client_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> "Actor":
        return cls(
            user_id=user_id,
            role=ActorRole(str(role).upper()),
            client_ids=frozenset(client_ids or ()),
        )

    @property
    def scope(self) -> "ScopeFilter":
        return ScopeFilter.for_actor(self)


@dataclass(frozen=True)
class ScopeFilter:
    """
    Which clients' stock an operation may see or touch.

    ``allowed_client_ids`` of None means unrestricted (warehouse staff).
    Client-restricted scopes are additionally limited to the cells actively
    assigned to their clients.
    """
    role: ActorRole
    allowed_client_ids: Optional[FrozenSet[uuid.UUID]] = None

    @classmethod
    def for_actor(cls, actor: Actor) -> "ScopeFilter":
        if actor.role == ActorRole.CLIENT:
            return cls(role=actor.role, allowed_client_ids=frozenset(actor.client_ids))
        return cls(role=actor.role, allowed_client_ids=None)

    @classmethod
    def unrestricted(cls) -> "ScopeFilter":
        return cls(role=ActorRole.ADMIN, allowed_client_ids=None)

    @property
    def is_restricted(self) -> bool:
        return self.allowed_client_ids is not None

    def allows_client(self, client_id: Optional[uuid.UUID]) -> bool:
        if not self.is_restricted:
            return True
        return client_id is not None and client_id in self.allowed_client_ids

    def ensure_client(self, client_id: Optional[uuid.UUID], what: str = "resource") -> None:
        if not self.allows_client(client_id):
            raise ScopeDenied(
                f"Actor scope does not include the client owning this {what}",
                details={"client_id": str(client_id) if client_id else None},
            )

    def has_role(self, roles: Iterable[ActorRole]) -> bool:
        return self.role in set(roles)

    def apply(self, query, client_column):
        """Restrict a select() to the allowed clients."""
        if not self.is_restricted:
            return query
        return query.where(client_column.in_(self.allowed_client_ids))
