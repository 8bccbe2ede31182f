from datetime import datetime
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from app.modules.sales.models import PurchaseStatus

class BuyerDetails(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

class CheckoutRequest(BaseModel):
    season_number: Optional[int] = Field(default=None, ge=1)
    buyer: Optional[BuyerDetails] = None

class CheckoutResponse(BaseModel):
    order_id: str
    amount: Decimal
    currency: str
    resumed: bool = False # True when an in-flight pending order was reused
    checkout_url: str
    fields: Dict[str, str] # POST these as a form to checkout_url

class AccessResponse(BaseModel):
    content_id: UUID
    season_number: Optional[int] = None
    access: bool

class PriceResponse(BaseModel):
    content_id: UUID
    season_number: Optional[int] = None
    amount: Decimal
    currency: str
    is_free: bool

class PurchaseRead(BaseModel):
    id: UUID
    user_id: UUID
    content_id: UUID
    season_number: Optional[int]
    order_id: str
    amount: Decimal
    currency: str
    status: PurchaseStatus
    purchased_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True

class PurchasedSeasons(BaseModel):
    content_id: UUID
    seasons: List[int]

class PaymentResult(BaseModel):
    outcome: str
    order_id: str
    status: PurchaseStatus
    message: str
    purchase: PurchaseRead

class RefundRequest(BaseModel):
    reason: Optional[str] = None
