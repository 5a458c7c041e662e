import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.auth import create_user, hash_password, replace_user_module_access, require_module, serialize_user
from app.db import get_db, unit_of_work
from app.models import User
from app.module_keys import MODULE_KEYS, ModuleKey

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/control",
    tags=["control"],
    dependencies=[Depends(require_module(ModuleKey.CONTROL.value))],
)

Role = Literal["ADMIN", "EMPLOYEE"]


class ControlUserResponse(BaseModel):
    id: int
    email: str
    full_name: Optional[str] = None
    role: Role
    is_active: bool
    permissions: list[str]


class ControlUserCreate(BaseModel):
    email: str
    full_name: Optional[str] = None
    password: str = Field(min_length=8)
    role: Role = "EMPLOYEE"
    permissions: list[str] = Field(default_factory=list)


class ControlUserUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Role
    is_active: bool
    permissions: list[str] = Field(default_factory=list)


class PasswordResetPayload(BaseModel):
    new_password: str = Field(min_length=8)


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/modules")
def list_modules():
    return {"modules": MODULE_KEYS}


@router.get("/users", response_model=list[ControlUserResponse])
def list_users(db: Session = Depends(get_db)):
    return [serialize_user(db, user) for user in db.query(User).order_by(User.id.asc()).all()]


@router.post("/users", status_code=status.HTTP_201_CREATED, response_model=ControlUserResponse)
def create_user_endpoint(payload: ControlUserCreate, db: Session = Depends(get_db)):
    with unit_of_work(db):
        user = create_user(
            db,
            email=payload.email,
            password=payload.password,
            full_name=payload.full_name,
            is_admin=payload.role == "ADMIN",
            permissions=payload.permissions,
        )
    logger.info("Created user %s (%s)", user.id, payload.role)
    return serialize_user(db, user)


@router.put("/users/{user_id}", response_model=ControlUserResponse)
def update_user(user_id: int, payload: ControlUserUpdate, db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    is_admin = payload.role == "ADMIN"
    with unit_of_work(db):
        user.full_name = payload.full_name
        user.is_admin = is_admin
        user.role = "admin" if is_admin else "employee"
        user.is_active = payload.is_active
        replace_user_module_access(db, user.id, MODULE_KEYS if is_admin else payload.permissions)
    return serialize_user(db, user)


@router.delete("/users/{user_id}")
def deactivate_user(user_id: int, db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    with unit_of_work(db):
        user.is_active = False
    logger.info("Deactivated user %s", user_id)
    return {"status": "ok"}


@router.post("/users/{user_id}/reset-password", status_code=status.HTTP_204_NO_CONTENT)
def reset_password(user_id: int, payload: PasswordResetPayload, db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    with unit_of_work(db):
        user.password_hash = hash_password(payload.new_password)
    logger.info("Reset password for user %s", user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
