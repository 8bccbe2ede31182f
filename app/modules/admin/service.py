from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.core.db import store_errors
from app.modules.admin.models import AuditLog
from uuid import UUID
from typing import Optional, Dict, Any, List

def build_audit_log(
    action: str,
    user_id: Optional[UUID] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    return AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id else None,
        metadata_json=metadata,
        ip_address=ip_address
    )

async def create_audit_log(
    db: AsyncSession,
    action: str,
    user_id: Optional[UUID] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
):
    log = build_audit_log(action, user_id, target_type, target_id, metadata, ip_address)
    db.add(log)
    # Commits whatever the caller staged together with the log entry
    with store_errors("create_audit_log"):
        await db.commit()
    return log

async def list_audit_logs(
    db: AsyncSession,
    action: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = 100
) -> List[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if target_id:
        stmt = stmt.where(AuditLog.target_id == target_id)
    with store_errors("list_audit_logs"):
        result = await db.execute(stmt)
    return list(result.scalars().all())
