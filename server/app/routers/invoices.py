from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.ar import schemas
from app.ar.invoices import confirm_invoice, get_invoice, list_invoices, void_invoice
from app.auth import require_module
from app.db import get_db, unit_of_work
from app.module_keys import ModuleKey
from app.utils import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter(prefix="/api", tags=["invoices"], dependencies=[Depends(require_module(ModuleKey.INVOICES.value))])


@router.get("/invoices", response_model=schemas.Page[schemas.InvoiceResponse])
def list_invoices_endpoint(
    client_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    kind: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    open_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return list_invoices(
        db,
        client_id=client_id,
        status=status_filter,
        kind=kind,
        start_date=start_date,
        end_date=end_date,
        open_only=open_only,
        page=page,
        limit=limit,
    )


@router.post("/invoices", response_model=schemas.InvoiceDetailResponse, status_code=status.HTTP_201_CREATED)
def create_invoice(payload: schemas.InvoiceCreate, db: Session = Depends(get_db)):
    with unit_of_work(db):
        invoice = confirm_invoice(db, payload.model_dump())
    return get_invoice(db, invoice.id)


@router.get("/invoices/{invoice_id}", response_model=schemas.InvoiceDetailResponse)
def get_invoice_endpoint(invoice_id: int, db: Session = Depends(get_db)):
    return get_invoice(db, invoice_id)


@router.post("/invoices/{invoice_id}/void", response_model=schemas.InvoiceStatusResponse)
def void_invoice_endpoint(invoice_id: int, db: Session = Depends(get_db)):
    with unit_of_work(db):
        invoice = void_invoice(db, invoice_id)
    db.refresh(invoice)
    return invoice
