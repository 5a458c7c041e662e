from typing import Optional

from sqlalchemy.orm import Session

from app.ar.errors import ClientNotFound, SellerInactive, SellerNotFound
from app.models import Client, Collection, Invoice, LedgerEntry, Seller


def get_client(db: Session, client_id: int) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise ClientNotFound(client_id)
    return client


def lock_client(db: Session, client_id: int) -> Client:
    """Row-lock the client for the rest of the transaction.

    Serializes writers that share a per-client pool, such as the prior balance
    ceiling.
    """
    client = db.query(Client).filter(Client.id == client_id).with_for_update().first()
    if not client:
        raise ClientNotFound(client_id)
    return client


def require_active_seller(db: Session, seller_id: Optional[int]) -> Optional[Seller]:
    if seller_id is None:
        return None
    seller = db.query(Seller).filter(Seller.id == seller_id).first()
    if not seller:
        raise SellerNotFound(seller_id)
    if not seller.is_active:
        raise SellerInactive(f"Seller '{seller.name}' is inactive.")
    return seller


def client_has_activity(db: Session, client_id: int) -> bool:
    return (
        db.query(Invoice.id).filter(Invoice.client_id == client_id).first() is not None
        or db.query(Collection.id).filter(Collection.client_id == client_id).first() is not None
        or db.query(LedgerEntry.id).filter(LedgerEntry.client_id == client_id).first() is not None
    )
