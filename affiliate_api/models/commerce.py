"""Storefront projections read by the affiliate program.

The catalogue and order lifecycle belong to the storefront; only the
columns the affiliate program reads or stamps are mapped here.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_api.database import Base
from affiliate_api.db_types import UUIDType, MoneyType
from affiliate_api.models.affiliate import utcnow


class Product(Base):
    """Catalogue product an affiliate can link to."""
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}')>"


class Order(Base):
    """Storefront order; attribution stamps the referring affiliate on it."""
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    total: Mapped[int] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False)

    # Affiliate attribution (audit)
    affiliate_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_profiles.id", ondelete="SET NULL"),
        nullable=True
    )
    referral_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Order(id='{self.id}', total={self.total})>"
