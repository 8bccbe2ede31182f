import uuid
from sqlalchemy import Column, String, Integer, Numeric, DateTime, func, ForeignKey, Enum, Index, Uuid, text
from app.core.db import Base
import enum

class PurchaseStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (
        Index("ix_purchases_user_status", "user_id", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False) # Owned by the identity provider, no FK
    content_id = Column(Uuid, ForeignKey("cms_content.id"), nullable=False)
    season_number = Column(Integer, nullable=True) # NULL for movies and whole-series purchases

    order_id = Column(String(96), unique=True, nullable=False, index=True)

    # Frozen at creation
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="LKR")

    status = Column(
        Enum(PurchaseStatus, name="purchase_status", values_callable=lambda e: [m.value for m in e]),
        default=PurchaseStatus.PENDING,
        nullable=False,
    )
    payment_method = Column(String, nullable=False, default="payhere")
    gateway_payment_id = Column(String, nullable=True) # Set from a verified gateway notification

    purchased_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

# One live (non-failed) purchase per (user, content, season).
# coalesce() so movie rows (season NULL) collide with each other too.
Index(
    "uq_purchases_live_tuple",
    Purchase.user_id,
    Purchase.content_id,
    func.coalesce(Purchase.season_number, -1),
    unique=True,
    postgresql_where=text("status <> 'failed'"),
    sqlite_where=text("status <> 'failed'"),
)
