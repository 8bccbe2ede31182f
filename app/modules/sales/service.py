import logging
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import store_errors
from app.core.errors import Conflict, NotFound, PaymentVerificationError
from app.modules.auth.schemas import Principal
from app.modules.cms import models as cms_models
from app.modules.sales import models, payhere, schemas

logger = logging.getLogger(__name__)

ORDER_PREFIX = "ORD"
ZERO = Decimal("0.00")

def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))

def _season_clause(column, season_number: Optional[int]):
    # Movies and whole-series purchases are stored with NULL season
    if season_number is None:
        return column.is_(None)
    return column == season_number

# ---------------------------------------------------------------------------
# Order identifiers
# ---------------------------------------------------------------------------

def generate_order_id(content_id: UUID, user_id: UUID, season_number: Optional[int] = None) -> str:
    """
    ORD-<content8>-<user8>[-S<n>]-<epoch ms>-<random>

    The prefix is readable by support; the time and random parts keep retries
    of the same (user, content, season) distinct.
    """
    parts = [ORDER_PREFIX, UUID(str(content_id)).hex[:8], UUID(str(user_id)).hex[:8]]
    if season_number is not None:
        parts.append(f"S{season_number}")
    parts.append(str(int(time.time() * 1000)))
    parts.append(secrets.token_hex(3))
    return "-".join(parts)

def describe_order_id(order_id: str) -> Optional[dict]:
    """Best-effort decode of the visible prefix, for support tooling."""
    parts = order_id.split("-")
    if len(parts) not in (5, 6) or parts[0] != ORDER_PREFIX:
        return None
    season = None
    if len(parts) == 6:
        if not parts[3].startswith("S") or not parts[3][1:].isdigit():
            return None
        season = int(parts[3][1:])
    try:
        created_ms = int(parts[-2])
    except ValueError:
        return None
    return {
        "content_prefix": parts[1],
        "user_prefix": parts[2],
        "season_number": season,
        "created_at": datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc),
    }

# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

async def resolve_price(db: AsyncSession, content_id: UUID, season_number: Optional[int] = None) -> Decimal:
    """Season override, then the content default. NULL or 0 means free. Unknown content is NotFound."""
    with store_errors("resolve_price"):
        content = await db.get(cms_models.Content, content_id)
        if not content:
            raise NotFound("Content not found")

        if season_number is not None:
            result = await db.execute(
                select(cms_models.SeasonPrice.price)
                .where(
                    cms_models.SeasonPrice.content_id == content_id,
                    cms_models.SeasonPrice.season_number == season_number
                )
            )
            override = result.scalars().first()
            if override is not None:
                return _money(override)

    return _money(content.price)

# ---------------------------------------------------------------------------
# Entitlement
# ---------------------------------------------------------------------------

async def has_completed_purchase(db: AsyncSession, user_id: UUID, content_id: UUID, season_number: Optional[int] = None) -> bool:
    with store_errors("has_completed_purchase"):
        result = await db.execute(
            select(models.Purchase.id)
            .where(
                models.Purchase.user_id == user_id,
                models.Purchase.content_id == content_id,
                _season_clause(models.Purchase.season_number, season_number),
                models.Purchase.status == models.PurchaseStatus.COMPLETED
            )
            .limit(1)
        )
    return result.scalars().first() is not None

async def has_access(
    db: AsyncSession,
    content_id: UUID,
    principal: Optional[Principal] = None,
    season_number: Optional[int] = None,
) -> bool:
    # Admins skip price and ledger entirely
    if principal is not None and principal.is_admin:
        return True

    # Free content is open to everyone, anonymous included, without touching the ledger
    price = await resolve_price(db, content_id, season_number)
    if price == ZERO:
        return True

    if principal is None:
        return False

    return await has_completed_purchase(db, principal.id, content_id, season_number)

async def has_pending_purchase(db: AsyncSession, user_id: UUID, content_id: UUID, season_number: Optional[int] = None) -> Optional[str]:
    with store_errors("has_pending_purchase"):
        result = await db.execute(
            select(models.Purchase.order_id)
            .where(
                models.Purchase.user_id == user_id,
                models.Purchase.content_id == content_id,
                _season_clause(models.Purchase.season_number, season_number),
                models.Purchase.status == models.PurchaseStatus.PENDING
            )
            .limit(1)
        )
    return result.scalars().first()

# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

async def get_purchase_by_order_id(db: AsyncSession, order_id: str) -> Optional[models.Purchase]:
    with store_errors("get_purchase_by_order_id"):
        result = await db.execute(
            select(models.Purchase)
            .where(models.Purchase.order_id == order_id)
            # Rows may have been changed by a bulk UPDATE in this session
            .execution_options(populate_existing=True)
        )
    return result.scalars().first()

async def create_pending(
    db: AsyncSession,
    user_id: UUID,
    content_id: UUID,
    order_id: str,
    amount,
    season_number: Optional[int] = None,
) -> models.Purchase:
    """Insert a pending row. The live-tuple unique index turns a duplicate into Conflict."""
    # Checked up front so a foreign-key failure is never reported as a duplicate
    with store_errors("create_pending"):
        content = await db.get(cms_models.Content, content_id)
    if not content:
        raise NotFound("Content not found")

    purchase = models.Purchase(
        user_id=user_id,
        content_id=content_id,
        season_number=season_number,
        order_id=order_id,
        amount=_money(amount),
        currency=settings.PAYHERE_CURRENCY,
        status=models.PurchaseStatus.PENDING,
        payment_method="payhere",
    )
    db.add(purchase)

    with store_errors("create_pending"):
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.info(f"[Ledger] Live purchase already exists for user={user_id} content={content_id} season={season_number}")
            raise Conflict() from e
        await db.refresh(purchase)

    logger.info(f"[Ledger] Pending purchase {order_id} created ({purchase.amount} {purchase.currency})")
    return purchase

async def _transition(
    db: AsyncSession,
    order_id: str,
    source: models.PurchaseStatus,
    target: models.PurchaseStatus,
    staged: Optional[list] = None,
    **values,
) -> Optional[models.Purchase]:
    """
    Conditional UPDATE ... WHERE status = source. None when nothing matched.
    Rows in ``staged`` are committed with the update, and only when it matched.
    """
    with store_errors(f"transition {source.value}->{target.value}"):
        result = await db.execute(
            update(models.Purchase)
            .where(models.Purchase.order_id == order_id, models.Purchase.status == source)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        matched = result.rowcount
        if matched == 1 and staged:
            db.add_all(staged)
        await db.commit()

    if matched != 1:
        logger.info(f"[Ledger] {order_id}: {source.value}->{target.value} was a no-op")
        return None

    logger.info(f"[Ledger] {order_id}: {source.value} -> {target.value}")
    return await get_purchase_by_order_id(db, order_id)

async def complete(db: AsyncSession, order_id: str, gateway_payment_id: Optional[str] = None) -> Optional[models.Purchase]:
    values = {"completed_at": datetime.now(timezone.utc)}
    if gateway_payment_id:
        values["gateway_payment_id"] = gateway_payment_id
    return await _transition(db, order_id, models.PurchaseStatus.PENDING, models.PurchaseStatus.COMPLETED, **values)

async def fail(db: AsyncSession, order_id: str, gateway_payment_id: Optional[str] = None) -> Optional[models.Purchase]:
    values = {}
    if gateway_payment_id:
        values["gateway_payment_id"] = gateway_payment_id
    return await _transition(db, order_id, models.PurchaseStatus.PENDING, models.PurchaseStatus.FAILED, **values)

async def finalize(
    db: AsyncSession,
    order_id: str,
    succeeded: bool,
    gateway_payment_id: Optional[str] = None,
) -> models.Purchase:
    """
    complete()/fail(), then re-read on a no-op so the caller sees the current
    state (e.g. already completed by the gateway notification).
    """
    if succeeded:
        purchase = await complete(db, order_id, gateway_payment_id)
    else:
        purchase = await fail(db, order_id, gateway_payment_id)
    if purchase:
        return purchase

    current = await get_purchase_by_order_id(db, order_id)
    if not current:
        raise NotFound("Purchase not found")
    return current

async def refund(db: AsyncSession, order_id: str, admin_id: UUID, reason: Optional[str] = None) -> models.Purchase:
    current = await get_purchase_by_order_id(db, order_id)
    if not current:
        raise NotFound("Purchase not found")

    from app.modules.admin import service as admin_service
    audit = admin_service.build_audit_log(
        action="purchase.refund",
        user_id=admin_id,
        target_type="purchase",
        target_id=order_id,
        metadata={"amount": str(current.amount), "currency": current.currency, "reason": reason}
    )
    # The audit row lands in the same commit as the status change
    purchase = await _transition(
        db, order_id, models.PurchaseStatus.COMPLETED, models.PurchaseStatus.REFUNDED, staged=[audit]
    )
    if not purchase:
        current = await get_purchase_by_order_id(db, order_id)
        raise Conflict(f"Only completed purchases can be refunded (current status: {current.status.value})")
    return purchase

async def list_user_purchases(db: AsyncSession, user_id: UUID) -> List[models.Purchase]:
    with store_errors("list_user_purchases"):
        result = await db.execute(
            select(models.Purchase)
            .where(
                models.Purchase.user_id == user_id,
                models.Purchase.status == models.PurchaseStatus.COMPLETED
            )
            .order_by(models.Purchase.purchased_at.desc())
        )
    return list(result.scalars().all())

async def get_user_purchased_seasons(db: AsyncSession, user_id: UUID, content_id: UUID) -> List[int]:
    with store_errors("get_user_purchased_seasons"):
        result = await db.execute(
            select(models.Purchase.season_number)
            .where(
                models.Purchase.user_id == user_id,
                models.Purchase.content_id == content_id,
                models.Purchase.status == models.PurchaseStatus.COMPLETED,
                models.Purchase.season_number.is_not(None)
            )
            .order_by(models.Purchase.season_number.asc())
        )
    return list(result.scalars().all())

# ---------------------------------------------------------------------------
# Checkout and gateway round trip
# ---------------------------------------------------------------------------

def _item_description(content: cms_models.Content, season_number: Optional[int]) -> str:
    if season_number is not None:
        return f"{content.title} - Season {season_number}"
    return content.title

def _buyer_for(principal: Principal, details: Optional[schemas.BuyerDetails]) -> payhere.Buyer:
    details = details or schemas.BuyerDetails()
    first_name = details.first_name or principal.username or (principal.email.split("@")[0] if principal.email else "Customer")
    return payhere.Buyer(
        first_name=first_name,
        last_name=details.last_name or "",
        email=str(principal.email or ""),
        phone=details.phone or "",
        address=details.address or "",
        city=details.city or "",
        country=details.country or "Sri Lanka",
    )

async def start_checkout(
    db: AsyncSession,
    principal: Principal,
    content_id: UUID,
    season_number: Optional[int] = None,
    buyer_details: Optional[schemas.BuyerDetails] = None,
    gateway: Optional[payhere.GatewayConfig] = None,
) -> schemas.CheckoutResponse:
    gateway = gateway or payhere.GatewayConfig.from_settings()

    if await has_access(db, content_id, principal, season_number):
        raise Conflict("You already have access to this content")

    # Fail closed before any ledger write
    payhere.ensure_configured(gateway)

    content = await db.get(cms_models.Content, content_id)
    price = await resolve_price(db, content_id, season_number)

    resumed = False
    order_id = await has_pending_purchase(db, principal.id, content_id, season_number)
    if order_id:
        resumed = True
        purchase = await get_purchase_by_order_id(db, order_id)
    else:
        try:
            purchase = await create_pending(
                db, principal.id, content_id, generate_order_id(content_id, principal.id, season_number), price, season_number
            )
        except Conflict:
            # Another tab got there first. Resume its order if it is still pending.
            order_id = await has_pending_purchase(db, principal.id, content_id, season_number)
            if not order_id:
                raise
            resumed = True
            purchase = await get_purchase_by_order_id(db, order_id)

    if resumed:
        logger.info(f"[Checkout] Resuming pending order {purchase.order_id} for user {principal.id}")

    return_url, cancel_url = payhere.build_return_urls(settings.FRONTEND_URL, purchase.order_id)
    request = payhere.build_payment_request(
        purchase.order_id,
        _item_description(content, season_number),
        purchase.amount, # Frozen amount, even if the price changed since a resumed order was created
        _buyer_for(principal, buyer_details),
        return_url,
        cancel_url,
        config=gateway,
    )

    return schemas.CheckoutResponse(
        order_id=purchase.order_id,
        amount=purchase.amount,
        currency=purchase.currency,
        resumed=resumed,
        checkout_url=request.checkout_url,
        fields=request.fields,
    )

async def _record_rejection(db: AsyncSession, order_id: str, reason: str, metadata: dict):
    from app.modules.admin import service as admin_service
    await admin_service.create_audit_log(
        db,
        action="payment.rejected",
        target_type="purchase",
        target_id=order_id,
        metadata={"reason": reason, **metadata}
    )

async def _check_paid_amount(db: AsyncSession, purchase: models.Purchase, amount: Optional[Decimal], currency: Optional[str]):
    if amount is None:
        return
    if _money(amount) != _money(purchase.amount) or (currency and currency != purchase.currency):
        logger.warning(
            f"[Payment] {purchase.order_id}: paid {amount} {currency}, expected {purchase.amount} {purchase.currency}"
        )
        await _record_rejection(
            db,
            purchase.order_id,
            "amount_mismatch",
            {"paid": str(amount), "paid_currency": currency, "expected": str(purchase.amount)},
        )
        raise PaymentVerificationError("Paid amount does not match the order")

async def handle_return(db: AsyncSession, principal: Principal, result: payhere.ReturnResult) -> models.Purchase:
    """
    Browser came back from the gateway. Cancellation fails the order; a success
    only completes it when the return carries a valid gateway signature.
    Otherwise the order stays pending until the notification lands.
    """
    if result.outcome == payhere.ReturnOutcome.ERROR or not result.order_id:
        raise PaymentVerificationError("Could not verify payment. Please contact support.")

    purchase = await get_purchase_by_order_id(db, result.order_id)
    # Someone else's order looks the same as a missing one
    if not purchase or (purchase.user_id != principal.id and not principal.is_admin):
        raise NotFound("Purchase not found")

    if result.outcome == payhere.ReturnOutcome.CANCELLED:
        return await finalize(db, result.order_id, succeeded=False)

    if result.verified:
        await _check_paid_amount(db, purchase, result.amount, result.currency)
        return await finalize(db, result.order_id, succeeded=True)

    logger.info(f"[Payment] Unverified success return for {result.order_id}, waiting for gateway notification")
    return purchase

async def apply_notification(db: AsyncSession, notification: payhere.Notification) -> models.Purchase:
    """Gateway server-to-server confirmation. Safe to deliver more than once."""
    purchase = await get_purchase_by_order_id(db, notification.order_id)
    if not purchase:
        logger.warning(f"[Payment] Notification for unknown order {notification.order_id}")
        raise NotFound("Purchase not found")

    status = notification.status
    if status == payhere.GatewayStatus.SUCCESS:
        await _check_paid_amount(db, purchase, notification.amount, notification.currency)
        purchase = await finalize(db, notification.order_id, succeeded=True, gateway_payment_id=notification.payment_id)
        if purchase.status == models.PurchaseStatus.FAILED:
            # failed -> completed is not allowed; the money has to be returned by an admin
            logger.warning(f"[Payment] {notification.order_id} was paid after it had failed, needs manual refund")
            await _record_rejection(
                db,
                notification.order_id,
                "paid_after_failure",
                {"payment_id": notification.payment_id, "amount": str(notification.amount)},
            )
        return purchase

    if status in (payhere.GatewayStatus.CANCELLED, payhere.GatewayStatus.FAILED):
        return await finalize(db, notification.order_id, succeeded=False, gateway_payment_id=notification.payment_id)

    if status == payhere.GatewayStatus.CHARGEDBACK:
        # Refunds stay an admin decision; leave a trail for them
        logger.warning(f"[Payment] Chargeback reported for {notification.order_id}")
        await _record_rejection(db, notification.order_id, "chargeback", {"payment_id": notification.payment_id})

    return purchase
