# cardkey_portal/routes/admins.py
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from cardkey_portal.core.rate_limiter import limiter, RATE_LIMIT_ADMIN, RATE_LIMIT_LOGIN

# Controllers
from cardkey_portal.controllers.admin_controller import (
    init_admin,
    login_admin,
    update_admin_password,
)
from cardkey_portal.controllers.cardkey_controller import (
    add_card_keys,
    backup_card_keys,
    delete_card_key,
    export_unused_card_keys,
    list_card_keys,
    restore_card_keys,
    storage_status,
    update_card_key_status,
)

# Schemas
from cardkey_portal.schemas.admin_schema import (
    AdminAccount,
    AdminLogin,
    AdminPasswordUpdate,
)
from cardkey_portal.schemas.card_key_schema import (
    CardKeyAction,
    CardKeyExportKind,
    CardKeyImport,
    CardKeyStatusFilter,
)

# Core
from cardkey_portal.core.auth import SESSION_COOKIE, get_current_admin
from cardkey_portal.core.config import Settings, get_settings
from cardkey_portal.core.schemas import BaseResponse, PaginatedResponse
from cardkey_portal.storage.base import CardKeyStore
from cardkey_portal.storage.factory import get_store

router = APIRouter()


def _set_session_cookie(response: JSONResponse, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
        path="/",
    )


@router.post("/init", response_model=BaseResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMIT_LOGIN)
def init(
    request: Request,
    store: CardKeyStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    return init_admin(store, settings)


@router.post("/login", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_LOGIN)
def login(
    request: Request,
    credentials: AdminLogin,
    store: CardKeyStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    content, token = login_admin(credentials, store, settings)
    response = JSONResponse(content=content)
    _set_session_cookie(response, token, settings)
    return response


@router.post("/logout", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_ADMIN)
def logout(request: Request, settings: Settings = Depends(get_settings)):
    response = JSONResponse(content=BaseResponse(success=True, message="Logged out").model_dump())
    response.delete_cookie(
        key=SESSION_COOKIE,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
    )
    return response


@router.post("/change-password", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_LOGIN)
def change_password(
    request: Request,
    password_update: AdminPasswordUpdate,
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
):
    return update_admin_password(current_admin, password_update, store)


@router.get("/cardkeys", response_model=PaginatedResponse)
@limiter.limit(RATE_LIMIT_ADMIN)
def list_cardkeys(
    request: Request,
    status_filter: CardKeyStatusFilter = Query(CardKeyStatusFilter.all, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
):
    return list_card_keys(store, status_filter, page, per_page)


@router.post("/cardkeys", response_model=BaseResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMIT_ADMIN)
def create_cardkeys(
    request: Request,
    payload: CardKeyImport,
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    return add_card_keys(payload, store, settings)


@router.get("/cardkeys/export")
@limiter.limit(RATE_LIMIT_ADMIN)
def export_cardkeys(
    request: Request,
    kind: CardKeyExportKind = Query(CardKeyExportKind.links),
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    return export_unused_card_keys(kind, store, settings)


@router.delete("/cardkeys/{card_id}", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_ADMIN)
def remove_cardkey(
    request: Request,
    card_id: str,
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
):
    return delete_card_key(card_id, store)


@router.patch("/cardkeys/{card_id}", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_ADMIN)
def change_cardkey_status(
    request: Request,
    card_id: str,
    body: CardKeyAction,
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
):
    return update_card_key_status(card_id, body.action, store)


@router.get("/backup")
@limiter.limit(RATE_LIMIT_ADMIN)
def download_backup(
    request: Request,
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
):
    return backup_card_keys(store)


@router.post("/restore", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_ADMIN)
def restore(
    request: Request,
    document: Dict[str, Any] = Body(...),
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
):
    return restore_card_keys(document, store)


@router.get("/status", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_ADMIN)
def status_check(
    request: Request,
    current_admin: AdminAccount = Depends(get_current_admin),
    store: CardKeyStore = Depends(get_store),
):
    return storage_status(store)
