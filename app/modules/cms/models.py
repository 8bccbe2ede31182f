import uuid
from sqlalchemy import Column, String, Integer, Numeric, DateTime, func, Enum, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from app.core.db import Base
import enum

class ContentType(str, enum.Enum):
    MOVIE = "movie"
    TV_SERIES = "tv_series"

class Content(Base):
    __tablename__ = "cms_content"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    content_type = Column(
        Enum(ContentType, name="content_type", values_callable=lambda e: [m.value for m in e]),
        default=ContentType.MOVIE,
        nullable=False,
    )

    # Default price. NULL or 0 = free. Series seasons fall back to this when they have no override.
    price = Column(Numeric(10, 2), nullable=True, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    season_prices = relationship("SeasonPrice", back_populates="content", cascade="all, delete-orphan")

class SeasonPrice(Base):
    __tablename__ = "season_prices"
    __table_args__ = (UniqueConstraint("content_id", "season_number", name="uq_season_prices_content_season"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    content_id = Column(Uuid, ForeignKey("cms_content.id", ondelete="CASCADE"), nullable=False, index=True)
    season_number = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    content = relationship("Content", back_populates="season_prices")
