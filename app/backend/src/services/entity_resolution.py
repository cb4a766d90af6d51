"""Resolve-or-create helpers for shops, suppliers and parts."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.models import Part, Shop, Supplier
from app.backend.src.schemas.invoice import LineItem

LOGGER = structlog.get_logger(__name__)


def normalize_name(value: str) -> str:
    return value.strip().lower()


def resolve_or_create_shop(session: Session, shop_id: str, name: str | None = None) -> Shop:
    shop = session.scalars(select(Shop).where(Shop.shop_id == shop_id)).first()
    if shop is None:
        shop = Shop(shop_id=shop_id, name=name or shop_id)
        session.add(shop)
        session.flush()
        LOGGER.info("shop_created", shop_id=shop_id)
    return shop


def resolve_or_create_supplier(session: Session, supplier_name: str) -> Supplier:
    """Find a supplier by normalized name or alias, recording new surface forms."""

    normalized = normalize_name(supplier_name)
    if not normalized:
        raise ValueError("Supplier name is empty")

    candidates = {normalized, supplier_name}
    supplier = session.scalars(
        select(Supplier).where(Supplier.normalized_name == normalized)
    ).first()
    if supplier is None:
        # Aliases live in a JSON column, so membership is checked in Python.
        for existing in session.scalars(select(Supplier).order_by(Supplier.id)):
            if candidates.intersection(existing.aliases or []):
                supplier = existing
                break

    if supplier is None:
        supplier = Supplier(normalized_name=normalized, aliases=[supplier_name])
        session.add(supplier)
        session.flush()
        LOGGER.info("supplier_created", supplier_id=supplier.id, normalized_name=normalized)
        return supplier

    if supplier_name not in (supplier.aliases or []):
        supplier.aliases = [*(supplier.aliases or []), supplier_name]
        session.flush()
        LOGGER.info("supplier_alias_added", supplier_id=supplier.id, alias=supplier_name)
    return supplier


def resolve_or_create_parts(session: Session, line_items: Iterable[LineItem]) -> list[Part]:
    parts: list[Part] = []
    for item in line_items:
        normalized_desc = normalize_name(item.description)
        criteria = Part.normalized_desc == normalized_desc
        if item.sku:
            criteria = criteria | (Part.sku == item.sku)
        part = session.scalars(select(Part).where(criteria).order_by(Part.id)).first()

        if part is None:
            part = Part(normalized_desc=normalized_desc, sku=item.sku)
            session.add(part)
        elif not part.sku and item.sku:
            part.sku = item.sku
        session.flush()
        parts.append(part)
    return parts


__all__ = [
    "normalize_name",
    "resolve_or_create_parts",
    "resolve_or_create_shop",
    "resolve_or_create_supplier",
]
