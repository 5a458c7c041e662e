import logging
import os
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, Field
from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth import (
    create_access_token,
    create_user,
    get_allowed_modules,
    get_current_user,
    hash_password,
    replace_user_module_access,
    serialize_user,
    verify_password,
)
from app.db import get_db, unit_of_work
from app.models import User
from app.module_keys import MODULE_KEYS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

DEV_ADMIN_EMAIL = "admin@receivables.local"

optional_token = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


class LoginPayload(BaseModel):
    email: str
    password: str


class BootstrapStatusResponse(BaseModel):
    needs_bootstrap: bool


class BootstrapAdminPayload(BaseModel):
    email: str
    password: str = Field(min_length=10)
    full_name: str | None = None


class BootstrapUserPayload(BootstrapAdminPayload):
    role: Literal["ADMIN", "EMPLOYEE"]
    permissions: list[str] = Field(default_factory=list)


class DevResetPayload(BaseModel):
    password: str = Field(default="password123!", min_length=10)


def _users_count(db: Session) -> int:
    return int(db.query(func.count(User.id)).scalar() or 0)


def _token_response(db: Session, user: User) -> dict:
    return {
        "access_token": create_access_token(user),
        "token_type": "bearer",
        "user": serialize_user(db, user),
    }


def _admin_from_token(db: Session, token: str | None) -> User:
    if not token:
        raise HTTPException(status_code=401, detail="Admin authentication required")
    try:
        user = get_current_user(token=token, db=db)
    except HTTPException:
        raise HTTPException(status_code=401, detail="Admin authentication required")
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _dev_reset_enabled() -> bool:
    env_name = os.getenv("ENV", "production").lower()
    allow_reset = os.getenv("ALLOW_DEV_RESET", "false").lower() in {"1", "true", "yes"}
    return env_name == "development" and allow_reset


@router.get("/bootstrap/status", response_model=BootstrapStatusResponse)
def bootstrap_status(db: Session = Depends(get_db)):
    return {"needs_bootstrap": _users_count(db) == 0}


@router.post("/bootstrap/admin", status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminPayload, db: Session = Depends(get_db)):
    try:
        with unit_of_work(db):
            if db.bind and db.bind.dialect.name == "postgresql":
                db.execute(text("LOCK TABLE users IN EXCLUSIVE MODE"))
            if _users_count(db) > 0:
                raise HTTPException(status_code=409, detail="Bootstrap already completed")
            user = create_user(
                db,
                email=payload.email,
                password=payload.password,
                full_name=payload.full_name,
                is_admin=True,
            )
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Bootstrap already completed")

    logger.info("Bootstrapped first admin user %s", user.id)
    return _token_response(db, user)


@router.post("/bootstrap/users", status_code=status.HTTP_201_CREATED)
def bootstrap_users(
    payload: list[BootstrapUserPayload],
    db: Session = Depends(get_db),
    token: str | None = Depends(optional_token),
):
    if _users_count(db) == 0:
        raise HTTPException(status_code=409, detail="Bootstrap has not completed yet")
    _admin_from_token(db, token)

    try:
        with unit_of_work(db):
            users = [
                create_user(
                    db,
                    email=item.email,
                    password=item.password,
                    full_name=item.full_name,
                    is_admin=item.role == "ADMIN",
                    permissions=item.permissions,
                )
                for item in payload
            ]
    except IntegrityError:
        raise HTTPException(status_code=409, detail="One or more emails already exist")

    logger.info("Created %s user(s) through bootstrap", len(users))
    return {"created": len(users), "users": [serialize_user(db, user) for user in users]}


@router.post("/dev/reset-admin", status_code=status.HTTP_204_NO_CONTENT)
def dev_reset_admin(payload: DevResetPayload, db: Session = Depends(get_db)):
    if not _dev_reset_enabled():
        raise HTTPException(status_code=404, detail="Not found")

    with unit_of_work(db):
        admin = db.query(User).filter(User.email == DEV_ADMIN_EMAIL).first()
        if admin is None:
            create_user(db, email=DEV_ADMIN_EMAIL, password=payload.password, full_name="System Admin", is_admin=True)
        else:
            admin.password_hash = hash_password(payload.password)
            admin.role = "admin"
            admin.is_admin = True
            admin.is_active = True
            replace_user_module_access(db, admin.id, MODULE_KEYS)
    logger.warning("Development admin account reset")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/login")
def login(payload: LoginPayload, db: Session = Depends(get_db)):
    if _users_count(db) == 0:
        raise HTTPException(status_code=403, detail="Bootstrap required before login")

    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        logger.warning("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _token_response(db, user)


@router.get("/me")
def me(current_user: User = Depends(get_current_user), allowed_modules: list[str] = Depends(get_allowed_modules)):
    return {
        "id": current_user.id,
        "email": current_user.email,
        "full_name": current_user.full_name,
        "is_admin": current_user.is_admin,
        "is_active": current_user.is_active,
        "allowed_modules": allowed_modules,
    }
