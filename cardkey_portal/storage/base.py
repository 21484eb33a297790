"""Storage contract shared by every backend.

All backends hand out value copies (pydantic models); callers never hold a
reference into the store. Guarded state transitions on ``is_used`` are
compare-and-swap in every backend.
"""
import uuid
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from cardkey_portal.core.utils import generate_secure_token, utcnow
from cardkey_portal.schemas.admin_schema import AdminAccount
from cardkey_portal.schemas.card_key_schema import CardKey, CardKeyCreate, CardKeyStats

# Collisions at 256 bits never happen in practice; the bound only keeps a
# broken token source from looping forever.
MAX_TOKEN_ATTEMPTS = 5


class StorageError(Exception):
    pass


class StorageUnavailable(StorageError):
    """The underlying file, Redis server or database could not be reached."""


class DuplicateSecureToken(StorageError):
    pass


class DuplicateUsername(StorageError):
    pass


def new_card_key(record: CardKeyCreate, taken_tokens=()) -> CardKey:
    for _ in range(MAX_TOKEN_ATTEMPTS):
        token = generate_secure_token()
        if token not in taken_tokens:
            break
    else:
        raise DuplicateSecureToken("could not draw an unused secure token")

    return CardKey(
        id=str(uuid.uuid4()),
        tenant_url=record.tenant_url,
        access_token=record.access_token,
        email=record.email,
        balance_url=record.balance_url,
        expiry_date=record.expiry_date,
        query_params=record.query_params,
        secure_token=token,
        is_used=False,
        created_at=utcnow(),
        used_at=None,
    )


def new_admin(username: str, password_hash: str) -> AdminAccount:
    return AdminAccount(
        id=str(uuid.uuid4()),
        username=username,
        password_hash=password_hash,
        created_at=utcnow(),
    )


def newest_first(cards: Iterable[CardKey]) -> List[CardKey]:
    return sorted(cards, key=lambda c: c.created_at, reverse=True)


def stats_for(cards: Iterable[CardKey]) -> CardKeyStats:
    total = 0
    used = 0
    for card in cards:
        total += 1
        used += int(card.is_used)
    return CardKeyStats(total=total, used=used, unused=total - used)


class CardKeyStore(ABC):
    backend_name: str = "abstract"

    # ---- card keys
    @abstractmethod
    def add_card_key(self, record: CardKeyCreate) -> str: ...

    # all-or-nothing: either every record is stored or none is
    @abstractmethod
    def batch_add_card_keys(self, records: List[CardKeyCreate]) -> List[str]: ...

    @abstractmethod
    def get_card_key_by_token(self, secure_token: str) -> Optional[CardKey]: ...

    @abstractmethod
    def get_card_key_by_id(self, card_id: str) -> Optional[CardKey]: ...

    # Unused -> Used; False if already used or unknown
    @abstractmethod
    def mark_card_key_as_used(self, secure_token: str) -> bool: ...

    # Used -> Unused; False if already unused or unknown
    @abstractmethod
    def restore_card_key(self, secure_token: str) -> bool: ...

    @abstractmethod
    def get_all_card_keys(self) -> List[CardKey]: ...

    @abstractmethod
    def delete_card_key(self, card_id: str) -> bool: ...

    @abstractmethod
    def get_stats(self) -> CardKeyStats: ...

    # skips records whose id or secure token is already stored
    @abstractmethod
    def import_card_keys(self, cards: List[CardKey]) -> int: ...

    # ---- admins
    @abstractmethod
    def add_admin(self, username: str, password_hash: str) -> str: ...

    @abstractmethod
    def get_admin_by_username(self, username: str) -> Optional[AdminAccount]: ...

    @abstractmethod
    def update_admin_password(self, username: str, password_hash: str) -> bool: ...

    @abstractmethod
    def count_admins(self) -> int: ...

    def close(self) -> None:
        pass
