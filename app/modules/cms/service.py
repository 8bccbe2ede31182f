"""
Administrative pricing.

Default prices live on the content row; TV series can override the default
per season. None of this touches existing purchases, whose amounts are frozen
when the pending row is created.
"""
import logging
from decimal import Decimal
from typing import Iterable, List, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import store_errors
from app.core.errors import Conflict, NotFound
from app.modules.admin import service as admin_service
from app.modules.cms import models

logger = logging.getLogger(__name__)

async def get_content(db: AsyncSession, content_id: UUID) -> models.Content:
    with store_errors("get_content"):
        content = await db.get(models.Content, content_id)
    if not content:
        raise NotFound("Content not found")
    return content

async def _get_series(db: AsyncSession, content_id: UUID) -> models.Content:
    content = await get_content(db, content_id)
    if content.content_type != models.ContentType.TV_SERIES:
        raise Conflict("Season prices apply to TV series only")
    return content

async def set_content_price(db: AsyncSession, content_id: UUID, price: Decimal, admin_id: UUID) -> models.Content:
    content = await get_content(db, content_id)
    old_price = content.price
    content.price = price

    await admin_service.create_audit_log(
        db,
        action="pricing.content.set",
        user_id=admin_id,
        target_type="content",
        target_id=str(content.id),
        metadata={"old_price": str(old_price) if old_price is not None else None, "new_price": str(price)}
    )
    await db.refresh(content)
    logger.info(f"[Pricing] Content {content_id} price {old_price} -> {price}")
    return content

async def _find_season_price(db: AsyncSession, content_id: UUID, season_number: int):
    with store_errors("find_season_price"):
        result = await db.execute(
            select(models.SeasonPrice)
            .where(
                models.SeasonPrice.content_id == content_id,
                models.SeasonPrice.season_number == season_number
            )
        )
    return result.scalars().first()

async def _upsert_season_prices(db: AsyncSession, content_id: UUID, items: Iterable[Tuple[int, Decimal]]) -> List[dict]:
    changes = []
    for season_number, price in items:
        row = await _find_season_price(db, content_id, season_number)
        if row:
            changes.append({"season_number": season_number, "old_price": str(row.price), "new_price": str(price)})
            row.price = price
        else:
            changes.append({"season_number": season_number, "old_price": None, "new_price": str(price)})
            db.add(models.SeasonPrice(content_id=content_id, season_number=season_number, price=price))
    return changes

async def _commit_season_prices(db: AsyncSession, content_id: UUID, items: List[Tuple[int, Decimal]]) -> List[dict]:
    changes = await _upsert_season_prices(db, content_id, items)
    with store_errors("commit_season_prices"):
        try:
            await db.flush()
        except IntegrityError:
            # A concurrent admin inserted the same season; redo as updates
            await db.rollback()
            changes = await _upsert_season_prices(db, content_id, items)
            await db.flush()
    return changes

async def set_season_price(
    db: AsyncSession, content_id: UUID, season_number: int, price: Decimal, admin_id: UUID
) -> models.SeasonPrice:
    await _get_series(db, content_id)
    changes = await _commit_season_prices(db, content_id, [(season_number, price)])

    await admin_service.create_audit_log(
        db,
        action="pricing.season.set",
        user_id=admin_id,
        target_type="content",
        target_id=str(content_id),
        metadata=changes[0]
    )
    return await _find_season_price(db, content_id, season_number)

async def bulk_set_season_prices(
    db: AsyncSession, content_id: UUID, items: List[Tuple[int, Decimal]], admin_id: UUID
) -> List[models.SeasonPrice]:
    await _get_series(db, content_id)

    # Last write wins for a season listed twice
    deduped = list({season: price for season, price in items}.items())
    changes = await _commit_season_prices(db, content_id, deduped)

    await admin_service.create_audit_log(
        db,
        action="pricing.season.bulk_set",
        user_id=admin_id,
        target_type="content",
        target_id=str(content_id),
        metadata={"changes": changes}
    )
    return await get_season_prices(db, content_id)

async def get_season_prices(db: AsyncSession, content_id: UUID) -> List[models.SeasonPrice]:
    await get_content(db, content_id)
    with store_errors("get_season_prices"):
        result = await db.execute(
            select(models.SeasonPrice)
            .where(models.SeasonPrice.content_id == content_id)
            .order_by(models.SeasonPrice.season_number.asc())
            .execution_options(populate_existing=True)
        )
    return list(result.scalars().all())

async def delete_season_price(db: AsyncSession, content_id: UUID, season_number: int, admin_id: UUID) -> None:
    row = await _find_season_price(db, content_id, season_number)
    if not row:
        raise NotFound("No price override for this season")

    old_price = row.price
    await db.delete(row)
    await admin_service.create_audit_log(
        db,
        action="pricing.season.delete",
        user_id=admin_id,
        target_type="content",
        target_id=str(content_id),
        metadata={"season_number": season_number, "old_price": str(old_price)}
    )
    logger.info(f"[Pricing] Season {season_number} override removed from {content_id}")
