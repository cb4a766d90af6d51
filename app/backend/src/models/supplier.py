"""Supplier model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utc_now

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .invoice import Invoice


class Supplier(Base):
    """A supplier identified by its normalized name and known aliases."""

    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    aliases: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    contact_email: Mapped[str | None] = mapped_column(String(255))
    contact_phone: Mapped[str | None] = mapped_column(String(64))
    website: Mapped[str | None] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    invoices: Mapped[list["Invoice"]] = relationship("Invoice", back_populates="supplier")


__all__ = ["Supplier"]
