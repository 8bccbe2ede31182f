from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core import deps
from app.modules.auth.schemas import Principal
from app.modules.admin import schemas, service
from app.modules.sales import schemas as sales_schemas
from app.modules.sales import service as sales_service

router = APIRouter()

@router.post("/purchases/{order_id}/refund", response_model=sales_schemas.PurchaseRead)
async def refund_purchase(
    order_id: str,
    payload: Optional[sales_schemas.RefundRequest] = None,
    admin: Principal = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Mark a completed purchase as refunded. The money movement itself happens
    in the PayHere merchant portal.
    """
    reason = payload.reason if payload else None
    return await sales_service.refund(db, order_id, admin.id, reason)

@router.get("/audit-logs", response_model=List[schemas.AuditLogRead])
async def get_audit_logs(
    action: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    admin: Principal = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.list_audit_logs(db, action=action, target_id=target_id, limit=limit)
