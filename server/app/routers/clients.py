import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.ar.errors import ClientInUse
from app.auth import require_module
from app.db import get_db, unit_of_work
from app.directory import schemas
from app.directory.service import client_has_activity, get_client
from app.models import Client
from app.module_keys import ModuleKey

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["clients"], dependencies=[Depends(require_module(ModuleKey.CLIENTS.value))])


@router.get("/clients", response_model=List[schemas.ClientResponse])
def list_clients(
    search: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
):
    query = db.query(Client)
    if not include_inactive:
        query = query.filter(Client.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(Client.name.ilike(like) | Client.document.ilike(like))
    return query.order_by(Client.name).all()


@router.post("/clients", response_model=schemas.ClientResponse, status_code=status.HTTP_201_CREATED)
def create_client(payload: schemas.ClientCreate, db: Session = Depends(get_db)):
    client = Client(**payload.model_dump())
    with unit_of_work(db):
        db.add(client)
    db.refresh(client)
    return client


@router.get("/clients/{client_id}", response_model=schemas.ClientResponse)
def get_client_endpoint(client_id: int, db: Session = Depends(get_db)):
    return get_client(db, client_id)


@router.put("/clients/{client_id}", response_model=schemas.ClientResponse)
def update_client(client_id: int, payload: schemas.ClientUpdate, db: Session = Depends(get_db)):
    client = get_client(db, client_id)
    with unit_of_work(db):
        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(client, key, value)
    db.refresh(client)
    return client


@router.delete("/clients/{client_id}")
def delete_client(client_id: int, hard: bool = Query(False), db: Session = Depends(get_db)):
    client = get_client(db, client_id)
    if not hard:
        with unit_of_work(db):
            client.is_active = False
        return {"id": client_id, "deleted": "soft"}

    if client_has_activity(db, client_id):
        raise ClientInUse(
            "Cannot delete client because it has invoices, collections or ledger entries.",
            tips=["Deactivate the client instead."],
        )
    with unit_of_work(db):
        db.delete(client)
    logger.info("Hard-deleted client %s", client_id)
    return {"id": client_id, "deleted": "hard"}
