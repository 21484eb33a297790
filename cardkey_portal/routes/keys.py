# cardkey_portal/routes/keys.py
from fastapi import APIRouter, Depends, Query, Request

from cardkey_portal.controllers.redemption_controller import redeem_card_key
from cardkey_portal.core.config import Settings, get_settings
from cardkey_portal.core.rate_limiter import limiter, RATE_LIMIT_PUBLIC
from cardkey_portal.core.schemas import BaseResponse
from cardkey_portal.storage.base import CardKeyStore
from cardkey_portal.storage.factory import get_store

router = APIRouter()


@router.get("/{secure_token}", response_model=BaseResponse)
@limiter.limit(RATE_LIMIT_PUBLIC)
def get_card_key(
    request: Request,
    secure_token: str,
    check: bool = Query(False),
    confirm: bool = Query(False),
    store: CardKeyStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    return redeem_card_key(secure_token, store, settings, check=check, confirm=confirm)
