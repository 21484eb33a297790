import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from cardkey_portal.core.config import Settings
from cardkey_portal.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationFailed,
)
from cardkey_portal.core.parser import (
    card_key_link,
    format_unused_details,
    format_unused_links,
    parse_card_keys_text,
)
from cardkey_portal.core.responses import success_response
from cardkey_portal.core.schemas import PaginatedResponse
from cardkey_portal.schemas.card_key_schema import (
    CardKeyActionType,
    CardKeyBackup,
    CardKeyCreate,
    CardKeyExportKind,
    CardKeyImport,
    CardKeyStatusFilter,
)
from cardkey_portal.storage.base import CardKeyStore

logger = logging.getLogger(__name__)


def list_card_keys(
    store: CardKeyStore,
    status_filter: CardKeyStatusFilter = CardKeyStatusFilter.all,
    page: int = 1,
    per_page: int = 50,
):
    cards = store.get_all_card_keys()
    stats = store.get_stats()

    if status_filter == CardKeyStatusFilter.used:
        cards = [c for c in cards if c.is_used]
    elif status_filter == CardKeyStatusFilter.unused:
        cards = [c for c in cards if not c.is_used]

    total_items = len(cards)
    total_pages = (total_items + per_page - 1) // per_page  # Ceiling division
    start = (page - 1) * per_page
    items = cards[start:start + per_page]

    return PaginatedResponse(
        success=True,
        message="No card keys found" if not items else "Card keys retrieved successfully",
        data={
            "items": [c.model_dump(mode="json") for c in items],
            "stats": stats.model_dump(),
        },
        page=page,
        per_page=per_page,
        total_items=total_items,
        total_pages=total_pages,
    ).model_dump(mode="json")


def _field_errors(e: ValidationError):
    return [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]


def _single_record(text: str) -> CardKeyCreate:
    try:
        data = json.loads(text)
    except ValueError:
        raise ValidationFailed("Card key data must be a JSON object")
    try:
        return CardKeyCreate.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed("Invalid card key data", {"errors": _field_errors(e)})


def add_card_keys(payload: CardKeyImport, store: CardKeyStore, settings: Settings):
    if payload.single:
        records = [_single_record(payload.text)]
    else:
        records = parse_card_keys_text(payload.text)
        if not records:
            raise ValidationFailed("No valid card keys found in the import text")

    tokens = store.batch_add_card_keys(records)
    logger.info("Imported %d card key(s)", len(tokens))

    return success_response(
        message=f"Successfully added {len(tokens)} card key(s)",
        data={
            "count": len(tokens),
            "tokens": tokens,
            "links": [card_key_link(settings.public_base_url, t) for t in tokens],
        },
        status_code=status.HTTP_201_CREATED,
    )


def delete_card_key(card_id: str, store: CardKeyStore):
    if not store.delete_card_key(card_id):
        raise NotFoundError("Card key not found")
    logger.info("Deleted card key %s", card_id)
    return success_response(message="Card key deleted successfully", data={"id": card_id})


def update_card_key_status(card_id: str, action: CardKeyActionType, store: CardKeyStore):
    card = store.get_card_key_by_id(card_id)
    if not card:
        raise NotFoundError("Card key not found")

    if action == CardKeyActionType.mark_used:
        if not store.mark_card_key_as_used(card.secure_token):
            raise ConflictError("Card key is already used")
        message = "Card key marked as used"
    else:
        if not store.restore_card_key(card.secure_token):
            raise ConflictError("Card key is not used")
        message = "Card key restored"

    logger.info("Card key %s: %s", card_id, action.value)
    updated = store.get_card_key_by_id(card_id)
    return success_response(
        message=message,
        data=updated.model_dump(mode="json") if updated else {"id": card_id},
    )


def export_unused_card_keys(kind: CardKeyExportKind, store: CardKeyStore, settings: Settings):
    cards = [c for c in store.get_all_card_keys() if not c.is_used]
    if not cards:
        raise NotFoundError("No unused card keys to export")

    if kind == CardKeyExportKind.links:
        content = format_unused_links(cards, settings.public_base_url)
    else:
        content = format_unused_details(cards, settings.public_base_url)

    filename = f"unused-cardkeys-{kind.value}-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.txt"
    return StreamingResponse(
        iter([content]),
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def backup_card_keys(store: CardKeyStore):
    now = datetime.now(timezone.utc)
    backup = CardKeyBackup(
        exportTime=now,
        stats=store.get_stats(),
        cardKeys=store.get_all_card_keys(),
    )
    filename = f"cardkeys-backup-{now.strftime('%Y-%m-%d')}.json"
    return JSONResponse(
        content=backup.model_dump(mode="json"),
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def restore_card_keys(document: Dict[str, Any], store: CardKeyStore):
    try:
        backup = CardKeyBackup.model_validate(document)
    except ValidationError as e:
        raise ValidationFailed("Invalid backup document", {"errors": _field_errors(e)})

    imported = store.import_card_keys(backup.cardKeys)
    skipped = len(backup.cardKeys) - imported
    logger.info("Restored %d card key(s) from backup, %d already present", imported, skipped)
    return success_response(
        message=f"Restored {imported} card key(s)",
        data={"imported": imported, "skipped": skipped},
    )


def storage_status(store: CardKeyStore):
    return success_response(
        message="Storage is available",
        data={
            "backend": store.backend_name,
            "stats": store.get_stats().model_dump(),
        },
    )
