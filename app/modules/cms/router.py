from typing import Any, List
from uuid import UUID
from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core import deps
from app.modules.auth.schemas import Principal
from app.modules.cms import schemas, service

router = APIRouter()

@router.put("/content/{content_id}/price", response_model=schemas.ContentPriceRead)
async def set_content_price(
    content_id: UUID,
    payload: schemas.PriceUpdate,
    admin: Principal = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db)
) -> Any:
    content = await service.set_content_price(db, content_id, payload.price, admin.id)
    return {"id": content.id, "title": content.title, "price": content.price or 0}

@router.get("/content/{content_id}/seasons/prices", response_model=List[schemas.SeasonPriceRead])
async def list_season_prices(
    content_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.get_season_prices(db, content_id)

@router.put("/content/{content_id}/seasons/prices", response_model=List[schemas.SeasonPriceRead])
async def bulk_set_season_prices(
    content_id: UUID,
    payload: schemas.SeasonPriceBulkUpdate,
    admin: Principal = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db)
) -> Any:
    items = [(item.season_number, item.price) for item in payload.items]
    return await service.bulk_set_season_prices(db, content_id, items, admin.id)

@router.put("/content/{content_id}/seasons/{season_number}/price", response_model=schemas.SeasonPriceRead)
async def set_season_price(
    content_id: UUID,
    payload: schemas.PriceUpdate,
    season_number: int = Path(ge=1),
    admin: Principal = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await service.set_season_price(db, content_id, season_number, payload.price, admin.id)

@router.delete("/content/{content_id}/seasons/{season_number}/price", status_code=204)
async def delete_season_price(
    content_id: UUID,
    season_number: int = Path(ge=1),
    admin: Principal = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db)
) -> None:
    await service.delete_season_price(db, content_id, season_number, admin.id)
