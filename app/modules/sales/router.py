import logging
from typing import Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_db
from app.core import deps
from app.core.errors import NotFound, PaymentVerificationError
from app.modules.auth.schemas import Principal
from app.modules.sales import models, payhere, schemas, service

logger = logging.getLogger(__name__)

router = APIRouter()

RESULT_MESSAGES = {
    models.PurchaseStatus.COMPLETED: "Payment successful. Your content is now unlocked.",
    models.PurchaseStatus.PENDING: "We are waiting for the payment provider to confirm your payment.",
    models.PurchaseStatus.FAILED: "Your payment was cancelled. No charges were made.",
    models.PurchaseStatus.REFUNDED: "This purchase has been refunded.",
}

@router.get("/content/{content_id}/access", response_model=schemas.AccessResponse)
async def check_access(
    content_id: UUID,
    season_number: Optional[int] = Query(None, ge=1),
    principal: Optional[Principal] = Depends(deps.get_current_principal_optional),
    db: AsyncSession = Depends(get_db)
) -> Any:
    access = await service.has_access(db, content_id, principal, season_number)
    return {"content_id": content_id, "season_number": season_number, "access": access}

@router.get("/content/{content_id}/price", response_model=schemas.PriceResponse)
async def get_price(
    content_id: UUID,
    season_number: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db)
) -> Any:
    amount = await service.resolve_price(db, content_id, season_number)
    return {
        "content_id": content_id,
        "season_number": season_number,
        "amount": amount,
        "currency": settings.PAYHERE_CURRENCY,
        "is_free": amount == service.ZERO,
    }

@router.post("/content/{content_id}/checkout", response_model=schemas.CheckoutResponse)
async def checkout(
    content_id: UUID,
    payload: schemas.CheckoutRequest,
    principal: Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.start_checkout(db, principal, content_id, payload.season_number, payload.buyer)

@router.get("/content/{content_id}/purchased-seasons", response_model=schemas.PurchasedSeasons)
async def purchased_seasons(
    content_id: UUID,
    principal: Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(get_db)
) -> Any:
    seasons = await service.get_user_purchased_seasons(db, principal.id, content_id)
    return {"content_id": content_id, "seasons": seasons}

@router.get("/payments/return", response_model=schemas.PaymentResult)
async def payment_return(
    request: Request,
    principal: Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Called by the storefront when the browser lands on the return or cancel URL.
    Only a signed return can complete the order here; otherwise the gateway
    notification does it and this reports the current state.
    """
    result = payhere.parse_return(dict(request.query_params))
    purchase = await service.handle_return(db, principal, result)
    return {
        "outcome": result.outcome.value,
        "order_id": purchase.order_id,
        "status": purchase.status,
        "message": RESULT_MESSAGES[purchase.status],
        "purchase": purchase,
    }

@router.post("/payments/notify")
async def payment_notify(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> Any:
    """PayHere server-to-server notification (form encoded)."""
    form = await request.form()
    data = {k: str(v) for k, v in form.items()}
    try:
        notification = payhere.parse_notification(data)
    except PaymentVerificationError as e:
        logger.warning(f"[Payment] Rejected notification for order {data.get('order_id')}: {e.detail}")
        raise

    purchase = await service.apply_notification(db, notification)
    return {"order_id": purchase.order_id, "status": purchase.status.value}

@router.get("/purchases/me", response_model=List[schemas.PurchaseRead])
async def my_purchases(
    principal: Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.list_user_purchases(db, principal.id)

@router.get("/purchases/{order_id}", response_model=schemas.PurchaseRead)
async def get_purchase(
    order_id: str,
    principal: Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(get_db)
) -> Any:
    purchase = await service.get_purchase_by_order_id(db, order_id)
    if not purchase or (purchase.user_id != principal.id and not principal.is_admin):
        raise NotFound("Purchase not found")
    return purchase
