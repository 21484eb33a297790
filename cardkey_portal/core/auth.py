import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import APIKeyCookie
from jose import JWTError, jwt

from cardkey_portal.core.config import Settings, get_settings
from cardkey_portal.core.exceptions import UnauthorizedError
from cardkey_portal.core.utils import verify_password
from cardkey_portal.schemas.admin_schema import AdminAccount
from cardkey_portal.storage.base import CardKeyStore
from cardkey_portal.storage.factory import get_store

logger = logging.getLogger(__name__)

SESSION_COOKIE = "admin-token"

admin_cookie_scheme = APIKeyCookie(name=SESSION_COOKIE, auto_error=False)


def create_session_token(data: dict, settings: Settings) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(hours=settings.session_ttl_hours)
    to_encode.update({"iat": now, "exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_session_token(token: Optional[str], settings: Settings) -> Optional[Dict[str, Any]]:
    """Claims of a valid token, ``None`` for anything else."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if not payload.get("sub") or not payload.get("username"):
        return None
    return payload


def authenticate_admin(
    store: CardKeyStore, username: str, password: str, settings: Settings
) -> Optional[Dict[str, Any]]:
    admin = store.get_admin_by_username(username)
    if admin is None or not verify_password(password, admin.password_hash):
        logger.warning("Failed admin login for %r", username)
        return None

    token = create_session_token({"sub": admin.id, "username": admin.username}, settings)
    return {"token": token, "admin": admin}


def get_current_admin(
    token: Optional[str] = Depends(admin_cookie_scheme),
    store: CardKeyStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> AdminAccount:
    payload = verify_session_token(token, settings)
    if payload is None:
        raise UnauthorizedError()

    admin = store.get_admin_by_username(payload["username"])
    if admin is None or admin.id != payload["sub"]:
        raise UnauthorizedError()
    return admin
