"""Shop endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.db import get_session_dependency
from app.backend.src.models import Shop
from app.backend.src.schemas.shop import ShopCreate, ShopRead

router = APIRouter(prefix="/shops", tags=["shops"])


@router.get("", response_model=list[ShopRead])
def list_shops(session: Session = Depends(get_session_dependency)) -> list[Shop]:
    return list(session.scalars(select(Shop).order_by(Shop.shop_id)))


@router.get("/{shop_id}", response_model=ShopRead)
def get_shop(shop_id: str, session: Session = Depends(get_session_dependency)) -> Shop:
    shop = session.scalars(select(Shop).where(Shop.shop_id == shop_id)).first()
    if shop is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shop not found")
    return shop


@router.post("", response_model=ShopRead, status_code=status.HTTP_201_CREATED)
def create_shop(payload: ShopCreate, session: Session = Depends(get_session_dependency)) -> Shop:
    """Create a shop; shop ids are unique."""

    existing = session.scalars(select(Shop).where(Shop.shop_id == payload.shop_id)).first()
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Shop with this ID already exists",
        )

    shop = Shop(shop_id=payload.shop_id, name=payload.name, cohort=payload.cohort)
    session.add(shop)
    session.commit()
    session.refresh(shop)
    return shop
