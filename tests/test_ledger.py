import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.db import SessionLocal
from app.core.errors import Conflict, NotFound
from app.modules.admin import service as admin_service
from app.modules.admin.models import AuditLog
from app.modules.sales import service
from app.modules.sales.models import PurchaseStatus


async def test_create_pending(db, movie, user):
    purchase = await service.create_pending(db, user.id, movie, "O1", Decimal("500"))

    assert purchase.status == PurchaseStatus.PENDING
    assert purchase.amount == Decimal("500.00")
    assert purchase.currency == "LKR"
    assert purchase.completed_at is None
    assert purchase.purchased_at is not None


async def test_duplicate_live_tuple_is_conflict(db, movie, user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    with pytest.raises(Conflict):
        await service.create_pending(db, user.id, movie, "O2", Decimal("500"))

    # Session is still usable after the rollback
    assert await service.has_pending_purchase(db, user.id, movie) == "O1"


async def test_duplicate_order_id_is_conflict(db, movie, series, user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    with pytest.raises(Conflict):
        await service.create_pending(db, user.id, series, "O1", Decimal("1000"), season_number=1)


async def test_completed_tuple_blocks_new_pending(db, movie, user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    await service.complete(db, "O1")
    with pytest.raises(Conflict):
        await service.create_pending(db, user.id, movie, "O2", Decimal("500"))


async def test_seasons_are_separate_tuples(db, series, user, other_user):
    await service.create_pending(db, user.id, series, "O1", Decimal("300"), season_number=2)
    await service.create_pending(db, user.id, series, "O2", Decimal("1000"), season_number=3)
    await service.create_pending(db, user.id, series, "O3", Decimal("1000"))
    await service.create_pending(db, other_user.id, series, "O4", Decimal("300"), season_number=2)


async def test_complete_is_idempotent(db, movie, user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))

    first = await service.complete(db, "O1", gateway_payment_id="320025071234")
    assert first.status == PurchaseStatus.COMPLETED
    assert first.completed_at is not None
    assert first.gateway_payment_id == "320025071234"

    assert await service.complete(db, "O1") is None
    assert await service.fail(db, "O1") is None

    purchase = await service.get_purchase_by_order_id(db, "O1")
    assert purchase.status == PurchaseStatus.COMPLETED
    assert purchase.completed_at is not None


async def test_fail_is_idempotent(db, movie, user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))

    failed = await service.fail(db, "O1")
    assert failed.status == PurchaseStatus.FAILED
    assert failed.completed_at is None

    assert await service.fail(db, "O1") is None
    assert await service.complete(db, "O1") is None
    assert (await service.get_purchase_by_order_id(db, "O1")).status == PurchaseStatus.FAILED


async def test_transitions_on_unknown_order_are_noops(db):
    assert await service.complete(db, "does-not-exist") is None
    assert await service.fail(db, "does-not-exist") is None


async def test_cancel_then_new_purchase(db, movie, user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    await service.fail(db, "O1")

    retry = await service.create_pending(db, user.id, movie, "O2", Decimal("500"))
    assert retry.status == PurchaseStatus.PENDING

    # Failed history is kept
    assert (await service.get_purchase_by_order_id(db, "O1")).status == PurchaseStatus.FAILED


async def test_concurrent_create_pending_has_one_winner(movie, user):
    async def attempt(order_id):
        async with SessionLocal() as session:
            try:
                await service.create_pending(session, user.id, movie, order_id, Decimal("500"))
                return order_id
            except Conflict:
                return None

    results = await asyncio.gather(*(attempt(f"RACE-{i}") for i in range(5)))
    winners = [r for r in results if r]
    assert len(winners) == 1

    async with SessionLocal() as session:
        assert await service.has_pending_purchase(session, user.id, movie) == winners[0]


async def test_finalize_reports_current_state(db, movie, user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    await service.complete(db, "O1")

    # A late cancel does not undo a confirmed payment
    purchase = await service.finalize(db, "O1", succeeded=False)
    assert purchase.status == PurchaseStatus.COMPLETED

    with pytest.raises(NotFound):
        await service.finalize(db, "missing", succeeded=True)


async def test_refund(db, movie, user, admin):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    await service.complete(db, "O1")

    refunded = await service.refund(db, "O1", admin.id, reason="Duplicate charge")
    assert refunded.status == PurchaseStatus.REFUNDED

    logs = await admin_service.list_audit_logs(db, action="purchase.refund", target_id="O1")
    assert logs[0].metadata_json["reason"] == "Duplicate charge"
    assert logs[0].user_id == admin.id

    with pytest.raises(Conflict):
        await service.refund(db, "O1", admin.id)


async def test_refund_requires_completed(db, movie, user, admin):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    with pytest.raises(Conflict):
        await service.refund(db, "O1", admin.id)
    with pytest.raises(NotFound):
        await service.refund(db, "missing", admin.id)


async def test_list_user_purchases_only_completed(db, movie, series, user, other_user):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    await service.complete(db, "O1")
    await service.create_pending(db, user.id, series, "O2", Decimal("300"), season_number=2)
    await service.create_pending(db, other_user.id, movie, "O3", Decimal("500"))
    await service.complete(db, "O3")

    purchases = await service.list_user_purchases(db, user.id)
    assert [p.order_id for p in purchases] == ["O1"]
    assert await service.list_user_purchases(db, uuid.uuid4()) == []


async def test_purchased_seasons(db, series, user):
    for order_id, season in (("O3", 3), ("O1", 1), ("O2", 2)):
        await service.create_pending(db, user.id, series, order_id, Decimal("1000"), season_number=season)
    await service.complete(db, "O3")
    await service.complete(db, "O1")
    await service.fail(db, "O2")

    assert await service.get_user_purchased_seasons(db, user.id, series) == [1, 3]


async def test_create_pending_for_unknown_content(db, user):
    with pytest.raises(NotFound):
        await service.create_pending(db, user.id, uuid.uuid4(), "O1", Decimal("500"))


async def test_refund_and_audit_commit_together(db, movie, user, admin, monkeypatch):
    await service.create_pending(db, user.id, movie, "O1", Decimal("500"))
    await service.complete(db, "O1")

    # action is NOT NULL, so this audit row makes the commit fail
    monkeypatch.setattr(admin_service, "build_audit_log", lambda **kwargs: AuditLog(action=None))
    with pytest.raises(IntegrityError):
        await service.refund(db, "O1", admin.id)

    async with SessionLocal() as session:
        purchase = await service.get_purchase_by_order_id(session, "O1")
        assert purchase.status == PurchaseStatus.COMPLETED
        assert await admin_service.list_audit_logs(session, action="purchase.refund") == []
