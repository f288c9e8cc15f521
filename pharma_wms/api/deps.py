from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from pharma_wms.database import get_db
from pharma_wms.core.scope import Actor, ActorRole, ScopeFilter


logger = logging.getLogger(__name__)


def _parse_client_ids(raw: Optional[str]) -> list[uuid.UUID]:
    if not raw:
        return []
    try:
        return [uuid.UUID(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError:
        logger.warning(f"Invalid X-Client-Ids header: {raw}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid client ids in X-Client-Ids",
        )


async def get_current_actor(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
    x_client_ids: Annotated[Optional[str], Header()] = None,
) -> Actor:
    """
    Dependency to get the calling actor.

    Identity is established by the upstream gateway, which forwards the
    authenticated user in X-User-Id / X-User-Role / X-Client-Ids.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not resolve the calling actor",
    )
    if not x_user_id or not x_user_role:
        raise credentials_exception

    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        logger.warning(f"Invalid user id header: {x_user_id}")
        raise credentials_exception

    try:
        role = ActorRole(x_user_role.strip().upper())
    except ValueError:
        logger.warning(f"Unknown role header: {x_user_role}")
        raise credentials_exception

    actor = Actor(
        user_id=user_id,
        role=role,
        client_ids=frozenset(_parse_client_ids(x_client_ids)),
    )
    if role == ActorRole.CLIENT and not actor.client_ids:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Client users must carry at least one client id",
        )
    return actor


async def get_scope(actor: Annotated[Actor, Depends(get_current_actor)]) -> ScopeFilter:
    return ScopeFilter.for_actor(actor)


# Type aliases for cleaner dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Scope = Annotated[ScopeFilter, Depends(get_scope)]
DB = Annotated[AsyncSession, Depends(get_db)]
