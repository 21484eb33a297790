"""Public redemption of a card key link.

A link can be opened in three ways:

* ``check``: peek at the key. An unused key comes back masked so that
  opening the link never reveals the credentials by accident.
* ``confirm``: consume the key and reveal it.
* neither flag: handled according to ``REDEEM_DIRECT_FETCH``.
"""
import logging

from cardkey_portal.core.config import Settings
from cardkey_portal.core.exceptions import NotFoundError
from cardkey_portal.core.parser import format_card_key_for_display
from cardkey_portal.core.responses import success_response
from cardkey_portal.schemas.card_key_schema import CardKey, CardKeyMasked, CardKeyPublic
from cardkey_portal.storage.base import CardKeyStore

logger = logging.getLogger(__name__)


def _lookup(secure_token: str, store: CardKeyStore) -> CardKey:
    card = store.get_card_key_by_token(secure_token)
    if not card:
        raise NotFoundError("Card key not found")
    return card


def _revealed(card: CardKey, message: str):
    data = CardKeyPublic.model_validate(card).model_dump(mode="json")
    data["formatted"] = format_card_key_for_display(card)
    return success_response(message=message, data=data)


def check_card_key(secure_token: str, store: CardKeyStore):
    card = _lookup(secure_token, store)
    if card.is_used:
        return _revealed(card, "Card key has already been used")
    return success_response(
        message="Card key is valid and unused. Confirm to reveal it.",
        data=CardKeyMasked.model_validate(card).model_dump(mode="json"),
    )


def confirm_card_key(secure_token: str, store: CardKeyStore):
    card = _lookup(secure_token, store)
    if not card.is_used:
        if store.mark_card_key_as_used(secure_token):
            logger.info("Card key %s redeemed", card.id)
        # Someone else may have won the race; the key is consumed either way.
        card = _lookup(secure_token, store)
    return _revealed(card, "Card key retrieved successfully")


def fetch_card_key(secure_token: str, store: CardKeyStore, settings: Settings):
    policy = settings.redeem_direct_fetch
    if policy == "deny":
        return check_card_key(secure_token, store)
    if policy == "reveal":
        return _revealed(_lookup(secure_token, store), "Card key retrieved successfully")
    return confirm_card_key(secure_token, store)


def redeem_card_key(
    secure_token: str,
    store: CardKeyStore,
    settings: Settings,
    check: bool = False,
    confirm: bool = False,
):
    if check:
        return check_card_key(secure_token, store)
    if confirm:
        return confirm_card_key(secure_token, store)
    return fetch_card_key(secure_token, store, settings)
