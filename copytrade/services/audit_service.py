"""Payment history (audit log) helpers."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.models import AuditLog


async def record(
    db: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: str,
    actor_user_id: Optional[int] = None,
    metadata: Optional[dict] = None,
) -> AuditLog:
    row = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        metadata_json=metadata,
    )
    db.add(row)
    await db.flush()
    return row


async def list_for_entity(db: AsyncSession, entity_type: str, entity_id: str) -> List[AuditLog]:
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    )
    return list(result.scalars().all())
