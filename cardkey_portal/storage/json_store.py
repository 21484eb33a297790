import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, List, Optional

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


class JsonFileStore(CardKeyStore):
    """Single JSON document ``{"cardKeys": [...], "admins": [...]}`` on disk.

    Every call holds the store lock for its whole read-modify-write, so one
    process never loses an update. Do not point two processes at one file.
    """

    backend_name = "json"

    def __init__(self, path: str) -> None:
        self.path = os.path.abspath(path)
        self._lock = threading.Lock()
        with self._lock:
            if not os.path.exists(self.path):
                self._save({"cardKeys": [], "admins": []})

    # ---- raw document
    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except FileNotFoundError:
            doc = {}
        except (OSError, ValueError) as e:
            logger.error("Cannot read card key file %s: %s", self.path, e)
            raise StorageUnavailable(f"cannot read {self.path}") from e
        if not isinstance(doc, dict):
            logger.error("Card key file %s does not hold a JSON object", self.path)
            raise StorageUnavailable(f"malformed {self.path}")
        doc.setdefault("cardKeys", [])
        doc.setdefault("admins", [])
        return doc

    def _save(self, doc: Dict[str, List[Dict[str, Any]]]) -> None:
        directory = os.path.dirname(self.path)
        tmp = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=directory, prefix=".cardkeys-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error("Cannot write card key file %s: %s", self.path, e)
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise StorageUnavailable(f"cannot write {self.path}") from e

    def _cards(self, doc) -> List[CardKey]:
        return [CardKey.model_validate(c) for c in doc["cardKeys"]]

    @staticmethod
    def _dump(card: CardKey) -> Dict[str, Any]:
        return card.model_dump(mode="json")

    # ---- card keys
    def add_card_key(self, record: CardKeyCreate) -> str:
        return self.batch_add_card_keys([record])[0]

    def batch_add_card_keys(self, records: List[CardKeyCreate]) -> List[str]:
        with self._lock:
            doc = self._load()
            taken = {c["secure_token"] for c in doc["cardKeys"]}
            tokens = []
            for record in records:
                card = new_card_key(record, taken)
                taken.add(card.secure_token)
                doc["cardKeys"].append(self._dump(card))
                tokens.append(card.secure_token)
            if tokens:
                self._save(doc)
        return tokens

    def get_card_key_by_token(self, secure_token: str) -> Optional[CardKey]:
        with self._lock:
            doc = self._load()
        for raw in doc["cardKeys"]:
            if raw["secure_token"] == secure_token:
                return CardKey.model_validate(raw)
        return None

    def get_card_key_by_id(self, card_id: str) -> Optional[CardKey]:
        with self._lock:
            doc = self._load()
        for raw in doc["cardKeys"]:
            if raw["id"] == card_id:
                return CardKey.model_validate(raw)
        return None

    def _set_used(self, secure_token: str, used: bool) -> bool:
        with self._lock:
            doc = self._load()
            for raw in doc["cardKeys"]:
                if raw["secure_token"] == secure_token and bool(raw["is_used"]) != used:
                    raw["is_used"] = used
                    raw["used_at"] = utcnow().isoformat() if used else None
                    self._save(doc)
                    return True
        return False

    def mark_card_key_as_used(self, secure_token: str) -> bool:
        return self._set_used(secure_token, True)

    def restore_card_key(self, secure_token: str) -> bool:
        return self._set_used(secure_token, False)

    def get_all_card_keys(self) -> List[CardKey]:
        with self._lock:
            doc = self._load()
        return newest_first(self._cards(doc))

    def delete_card_key(self, card_id: str) -> bool:
        with self._lock:
            doc = self._load()
            remaining = [c for c in doc["cardKeys"] if c["id"] != card_id]
            if len(remaining) == len(doc["cardKeys"]):
                return False
            doc["cardKeys"] = remaining
            self._save(doc)
        return True

    def get_stats(self) -> CardKeyStats:
        with self._lock:
            doc = self._load()
        return stats_for(self._cards(doc))

    def import_card_keys(self, cards: List[CardKey]) -> int:
        with self._lock:
            doc = self._load()
            ids = {c["id"] for c in doc["cardKeys"]}
            tokens = {c["secure_token"] for c in doc["cardKeys"]}
            imported = 0
            for card in cards:
                if card.id in ids or card.secure_token in tokens:
                    continue
                doc["cardKeys"].append(self._dump(card))
                ids.add(card.id)
                tokens.add(card.secure_token)
                imported += 1
            if imported:
                self._save(doc)
        return imported

    # ---- admins
    def add_admin(self, username: str, password_hash: str) -> str:
        with self._lock:
            doc = self._load()
            if any(a["username"] == username for a in doc["admins"]):
                raise DuplicateUsername(username)
            admin = new_admin(username, password_hash)
            doc["admins"].append(admin.model_dump(mode="json"))
            self._save(doc)
        return admin.id

    def get_admin_by_username(self, username: str) -> Optional[AdminAccount]:
        with self._lock:
            doc = self._load()
        for raw in doc["admins"]:
            if raw["username"] == username:
                return AdminAccount.model_validate(raw)
        return None

    def update_admin_password(self, username: str, password_hash: str) -> bool:
        with self._lock:
            doc = self._load()
            for raw in doc["admins"]:
                if raw["username"] == username:
                    raw["password_hash"] = password_hash
                    self._save(doc)
                    return True
        return False

    def count_admins(self) -> int:
        with self._lock:
            doc = self._load()
        return len(doc["admins"])
