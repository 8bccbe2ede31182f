from typing import List
from pydantic import BaseModel, Field
from decimal import Decimal
from uuid import UUID

class PriceUpdate(BaseModel):
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)

class SeasonPriceItem(BaseModel):
    season_number: int = Field(ge=1)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)

class SeasonPriceBulkUpdate(BaseModel):
    items: List[SeasonPriceItem] = Field(min_length=1)

class SeasonPriceRead(BaseModel):
    content_id: UUID
    season_number: int
    price: Decimal

    class Config:
        from_attributes = True

class ContentPriceRead(BaseModel):
    id: UUID
    title: str
    price: Decimal

    class Config:
        from_attributes = True
