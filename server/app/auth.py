from datetime import datetime, timedelta, timezone
import logging
import os
from typing import Iterable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import Module, User, UserModuleAccess
from app.module_keys import MODULE_DEFINITIONS, MODULE_KEY_SET, MODULE_KEYS

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "receivables-dev-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 12)))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(user: User, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(user.id), "is_admin": user.is_admin, "exp": expire}
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def allowed_modules_for(db: Session, user: User) -> list[str]:
    if user.is_admin:
        return list(MODULE_KEYS)

    rows = (
        db.query(Module.key)
        .join(UserModuleAccess, UserModuleAccess.module_id == Module.id)
        .filter(UserModuleAccess.user_id == user.id)
        .order_by(Module.key.asc())
        .all()
    )
    return [key for (key,) in rows]


def serialize_user(db: Session, user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": "ADMIN" if user.is_admin else "EMPLOYEE",
        "is_admin": user.is_admin,
        "is_active": user.is_active,
        "permissions": allowed_modules_for(db, user),
    }


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user or not user.is_active:
        raise credentials_exception
    return user


def get_allowed_modules(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> list[str]:
    return allowed_modules_for(db, current_user)


def require_module(module_key: str):
    def dependency(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> User:
        if current_user.is_admin:
            return current_user
        if module_key not in allowed_modules_for(db, current_user):
            logger.warning("User %s denied access to module %s", current_user.id, module_key)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not authorized for module '{module_key}'",
            )
        return current_user

    return dependency


def seed_modules(db: Session) -> None:
    existing = {row[0] for row in db.query(Module.key).all()}
    for module_key, name in MODULE_DEFINITIONS:
        if module_key.value not in existing:
            db.add(Module(key=module_key.value, name=name))
    db.flush()


def replace_user_module_access(db: Session, user_id: int, module_keys: Iterable[str]) -> list[str]:
    module_keys = list(dict.fromkeys(module_keys))
    invalid = sorted(key for key in module_keys if key not in MODULE_KEY_SET)
    if invalid:
        raise HTTPException(status_code=400, detail=f"Unknown module keys: {', '.join(invalid)}")

    modules = db.query(Module).filter(Module.key.in_(module_keys)).all() if module_keys else []
    db.query(UserModuleAccess).filter(UserModuleAccess.user_id == user_id).delete()
    for module in modules:
        db.add(UserModuleAccess(user_id=user_id, module_id=module.id))
    db.flush()
    return module_keys


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str | None = None,
    is_admin: bool = False,
    permissions: Iterable[str] = (),
) -> User:
    """Add an active user and its module access. Admins get every module."""
    if db.query(User.id).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Email already exists: {email}")

    seed_modules(db)
    user = User(
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        role="admin" if is_admin else "employee",
        is_admin=is_admin,
        is_active=True,
    )
    db.add(user)
    db.flush()
    replace_user_module_access(db, user.id, MODULE_KEYS if is_admin else permissions)
    return user
