from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.ar.errors import SellerNotFound
from app.auth import require_module
from app.db import get_db, unit_of_work
from app.directory import schemas
from app.models import Seller
from app.module_keys import ModuleKey

router = APIRouter(prefix="/api", tags=["sellers"], dependencies=[Depends(require_module(ModuleKey.SELLERS.value))])


def _get_seller(db: Session, seller_id: int) -> Seller:
    seller = db.query(Seller).filter(Seller.id == seller_id).first()
    if not seller:
        raise SellerNotFound(seller_id)
    return seller


@router.get("/sellers", response_model=List[schemas.SellerResponse])
def list_sellers(search: Optional[str] = None, active_only: bool = False, db: Session = Depends(get_db)):
    query = db.query(Seller)
    if active_only:
        query = query.filter(Seller.is_active.is_(True))
    if search:
        query = query.filter(Seller.name.ilike(f"%{search.strip()}%"))
    return query.order_by(Seller.name).all()


@router.post("/sellers", response_model=schemas.SellerResponse, status_code=status.HTTP_201_CREATED)
def create_seller(payload: schemas.SellerCreate, db: Session = Depends(get_db)):
    seller = Seller(**payload.model_dump())
    with unit_of_work(db):
        db.add(seller)
    db.refresh(seller)
    return seller


@router.get("/sellers/{seller_id}", response_model=schemas.SellerResponse)
def get_seller(seller_id: int, db: Session = Depends(get_db)):
    return _get_seller(db, seller_id)


@router.put("/sellers/{seller_id}", response_model=schemas.SellerResponse)
def update_seller(seller_id: int, payload: schemas.SellerUpdate, db: Session = Depends(get_db)):
    seller = _get_seller(db, seller_id)
    with unit_of_work(db):
        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(seller, key, value)
    db.refresh(seller)
    return seller
