import json
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from redis import Redis
from redis.client import Pipeline
from redis.exceptions import RedisError

from cardkey_portal.core.utils import utcnow
from cardkey_portal.schemas.admin_schema import AdminAccount
from cardkey_portal.schemas.card_key_schema import CardKey, CardKeyCreate, CardKeyStats
from .base import (
    CardKeyStore,
    DuplicateUsername,
    StorageUnavailable,
    new_admin,
    new_card_key,
    newest_first,
    stats_for,
)

logger = logging.getLogger(__name__)

CARDKEYS_KEY = "cardkeys"
ADMINS_KEY = "admins"


class RedisStore(CardKeyStore):
    """Both collections as JSON arrays under two fixed keys.

    Mutations run inside ``WATCH``/``MULTI``/``EXEC`` and are replayed when
    another writer touched the key in between, so a concurrent mark-used,
    delete or import is never overwritten by a stale copy.
    """

    backend_name = "redis"

    def __init__(self, r: Redis, key_prefix: str = "") -> None:
        self.r = r
        self.cardkeys_key = f"{key_prefix}{CARDKEYS_KEY}"
        self.admins_key = f"{key_prefix}{ADMINS_KEY}"

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "") -> "RedisStore":
        r = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )
        return cls(r, key_prefix=key_prefix)

    @contextmanager
    def _guard(self):
        try:
            yield
        except RedisError as e:
            logger.error("Redis error: %s", e)
            raise StorageUnavailable("redis unavailable") from e

    @staticmethod
    def _decode(raw: Optional[str]) -> List[Dict[str, Any]]:
        return json.loads(raw) if raw else []

    def _read(self, key: str) -> List[Dict[str, Any]]:
        with self._guard():
            return self._decode(self.r.get(key))

    def _update(self, key: str, fn: Callable[[List[Dict[str, Any]]], Any]):
        """Run ``fn`` on the decoded list; write it back only if ``fn`` says so.

        ``fn`` returns ``(changed, result)``.
        """

        def _tx(pipe: Pipeline):
            items = self._decode(pipe.get(key))
            changed, result = fn(items)
            if changed:
                pipe.multi()
                pipe.set(key, json.dumps(items, ensure_ascii=False))
            return result

        with self._guard():
            return self.r.transaction(_tx, key, value_from_callable=True)

    # ---- card keys
    def add_card_key(self, record: CardKeyCreate) -> str:
        return self.batch_add_card_keys([record])[0]

    def batch_add_card_keys(self, records: List[CardKeyCreate]) -> List[str]:
        if not records:
            return []

        def _add(items):
            taken = {c["secure_token"] for c in items}
            tokens = []
            for record in records:
                card = new_card_key(record, taken)
                taken.add(card.secure_token)
                items.append(card.model_dump(mode="json"))
                tokens.append(card.secure_token)
            return True, tokens

        return self._update(self.cardkeys_key, _add)

    def get_card_key_by_token(self, secure_token: str) -> Optional[CardKey]:
        for raw in self._read(self.cardkeys_key):
            if raw["secure_token"] == secure_token:
                return CardKey.model_validate(raw)
        return None

    def get_card_key_by_id(self, card_id: str) -> Optional[CardKey]:
        for raw in self._read(self.cardkeys_key):
            if raw["id"] == card_id:
                return CardKey.model_validate(raw)
        return None

    def _set_used(self, secure_token: str, used: bool) -> bool:
        def _flip(items):
            for raw in items:
                if raw["secure_token"] == secure_token and bool(raw["is_used"]) != used:
                    raw["is_used"] = used
                    raw["used_at"] = utcnow().isoformat() if used else None
                    return True, True
            return False, False

        return self._update(self.cardkeys_key, _flip)

    def mark_card_key_as_used(self, secure_token: str) -> bool:
        return self._set_used(secure_token, True)

    def restore_card_key(self, secure_token: str) -> bool:
        return self._set_used(secure_token, False)

    def get_all_card_keys(self) -> List[CardKey]:
        cards = [CardKey.model_validate(c) for c in self._read(self.cardkeys_key)]
        return newest_first(cards)

    def delete_card_key(self, card_id: str) -> bool:
        def _delete(items):
            for index, raw in enumerate(items):
                if raw["id"] == card_id:
                    del items[index]
                    return True, True
            return False, False

        return self._update(self.cardkeys_key, _delete)

    def get_stats(self) -> CardKeyStats:
        return stats_for(CardKey.model_validate(c) for c in self._read(self.cardkeys_key))

    def import_card_keys(self, cards: List[CardKey]) -> int:
        def _import(items):
            ids = {c["id"] for c in items}
            tokens = {c["secure_token"] for c in items}
            imported = 0
            for card in cards:
                if card.id in ids or card.secure_token in tokens:
                    continue
                items.append(card.model_dump(mode="json"))
                ids.add(card.id)
                tokens.add(card.secure_token)
                imported += 1
            return imported > 0, imported

        return self._update(self.cardkeys_key, _import)

    # ---- admins
    def add_admin(self, username: str, password_hash: str) -> str:
        def _add(items):
            if any(a["username"] == username for a in items):
                raise DuplicateUsername(username)
            admin = new_admin(username, password_hash)
            items.append(admin.model_dump(mode="json"))
            return True, admin.id

        return self._update(self.admins_key, _add)

    def get_admin_by_username(self, username: str) -> Optional[AdminAccount]:
        for raw in self._read(self.admins_key):
            if raw["username"] == username:
                return AdminAccount.model_validate(raw)
        return None

    def update_admin_password(self, username: str, password_hash: str) -> bool:
        def _update(items):
            for raw in items:
                if raw["username"] == username:
                    raw["password_hash"] = password_hash
                    return True, True
            return False, False

        return self._update(self.admins_key, _update)

    def count_admins(self) -> int:
        return len(self._read(self.admins_key))

    def close(self) -> None:
        self.r.close()
