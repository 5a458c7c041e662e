from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.ar import schemas
from app.ar.collections import (
    allocation_summary,
    create_collection,
    delete_collection,
    get_collection,
    list_collections,
)
from app.auth import require_module
from app.db import get_db, unit_of_work
from app.models import APPLIES_TO_CREDIT, APPLIES_TO_INVOICE, APPLIES_TO_PRIOR_BALANCE, Collection
from app.module_keys import ModuleKey
from app.utils import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter(
    prefix="/api",
    tags=["collections"],
    dependencies=[Depends(require_module(ModuleKey.COLLECTIONS.value))],
)


def _detail(collection: Collection) -> dict:
    summary = allocation_summary(collection)
    return {
        **schemas.CollectionResponse.model_validate(collection).model_dump(),
        "applied_to_invoices": summary[APPLIES_TO_INVOICE],
        "applied_to_prior_balance": summary[APPLIES_TO_PRIOR_BALANCE],
        "unassigned_credit": summary[APPLIES_TO_CREDIT],
    }


@router.get("/collections", response_model=schemas.Page[schemas.CollectionResponse])
def list_collections_endpoint(
    client_id: Optional[int] = None,
    seller_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return list_collections(
        db,
        client_id=client_id,
        seller_id=seller_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )


@router.get("/collections/{collection_id}", response_model=schemas.CollectionDetailResponse)
def get_collection_endpoint(collection_id: int, db: Session = Depends(get_db)):
    return _detail(get_collection(db, collection_id))


@router.post(
    "/collections",
    response_model=schemas.CollectionDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_collection_endpoint(payload: schemas.CollectionCreate, db: Session = Depends(get_db)):
    with unit_of_work(db):
        collection = create_collection(
            db,
            client_id=payload.client_id,
            seller_id=payload.seller_id,
            collection_date=payload.collection_date,
            total_collected=payload.total_collected,
            allocations=payload.allocations,
            notes=payload.notes,
        )
    return _detail(get_collection(db, collection.id))


@router.delete("/collections/{collection_id}", response_model=schemas.CollectionDeleteResponse)
def delete_collection_endpoint(collection_id: int, db: Session = Depends(get_db)):
    with unit_of_work(db):
        return delete_collection(db, collection_id)
