from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.ar import schemas
from app.ar.debt import client_debt, debt_summary, rebuild_amount_settled, settlement_drift
from app.ar.ledger import list_entries, record_adjustment
from app.ar.prior_balances import load_prior_balance, load_prior_balances_bulk
from app.auth import require_module
from app.db import get_db, unit_of_work
from app.module_keys import ModuleKey
from app.utils import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MONEY_TOLERANCE

router = APIRouter(
    prefix="/api",
    tags=["receivables"],
    dependencies=[Depends(require_module(ModuleKey.RECEIVABLES.value))],
)


@router.get("/clients/{client_id}/debt", response_model=schemas.ClientDebtResponse)
def get_client_debt(client_id: int, db: Session = Depends(get_db)):
    return client_debt(db, client_id)


@router.get("/clients/{client_id}/ledger", response_model=schemas.LedgerPage)
def get_client_ledger(
    client_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return list_entries(db, client_id, start=start_date, end=end_date, page=page, limit=limit)


@router.post(
    "/ledger/adjustments",
    response_model=schemas.LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_adjustment(payload: schemas.AdjustmentCreate, db: Session = Depends(get_db)):
    with unit_of_work(db):
        entry = record_adjustment(db, payload.model_dump())
    db.refresh(entry)
    return entry


@router.post(
    "/prior-balances",
    response_model=schemas.PriorBalanceResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_prior_balance(payload: schemas.PriorBalanceCreate, db: Session = Depends(get_db)):
    with unit_of_work(db):
        return load_prior_balance(
            db,
            client_id=payload.client_id,
            amount=payload.amount,
            entry_date=payload.entry_date,
            seller_id=payload.seller_id,
            description=payload.description,
        )


@router.post(
    "/prior-balances/bulk",
    response_model=schemas.PriorBalanceBulkResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_prior_balances_bulk(payload: schemas.PriorBalanceBulkCreate, db: Session = Depends(get_db)):
    with unit_of_work(db):
        return load_prior_balances_bulk(
            db,
            [item.model_dump() for item in payload.items],
            entry_date=payload.entry_date,
            seller_id=payload.seller_id,
            notes=payload.notes,
        )


@router.get("/debts", response_model=schemas.DebtSummaryResponse)
def list_debts(
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    min_balance: Decimal = Query(MONEY_TOLERANCE, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return debt_summary(
        db,
        search=search,
        start_date=start_date,
        end_date=end_date,
        min_balance=min_balance,
        page=page,
        limit=limit,
    )


@router.get("/ar/reconciliation", response_model=List[schemas.SettlementDriftRow])
def get_settlement_drift(db: Session = Depends(get_db)):
    return settlement_drift(db)


@router.post("/ar/reconciliation/rebuild", response_model=schemas.RebuildResponse)
def rebuild_settlement_cache(
    include_unbacked: bool = False,
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        return rebuild_amount_settled(db, include_unbacked=include_unbacked)
