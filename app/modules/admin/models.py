from sqlalchemy import Column, String, DateTime, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
import uuid

from app.core.db import Base

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=True) # Nullable for gateway/system actions

    action = Column(String, nullable=False) # e.g. "pricing.content.set", "purchase.refund", "payment.rejected"
    target_type = Column(String, nullable=True) # e.g. "content", "season_price", "purchase"
    target_id = Column(String, nullable=True)

    # JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
    metadata_json = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
