import logging
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy import desc, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from cardkey_portal.core.database import Base, make_engine
from cardkey_portal.core.utils import utcnow
from cardkey_portal.models.admin import AdminRow
from cardkey_portal.models.card_key import CardKeyRow
from cardkey_portal.schemas.admin_schema import AdminAccount
from cardkey_portal.schemas.card_key_schema import CardKey, CardKeyCreate, CardKeyStats
from .base import (
    MAX_TOKEN_ATTEMPTS,
    CardKeyStore,
    DuplicateSecureToken,
    DuplicateUsername,
    StorageUnavailable,
    new_admin,
    new_card_key,
)

logger = logging.getLogger(__name__)


class SqlStore(CardKeyStore):
    """Relational backend: one row per card key, guarded updates in SQL."""

    backend_name = "sql"

    def __init__(self, engine: Engine, SessionLocal: sessionmaker) -> None:
        self.engine = engine
        self.SessionLocal = SessionLocal
        try:
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as e:
            logger.error("Cannot create card key tables: %s", e)
            raise StorageUnavailable("database unavailable") from e

    @classmethod
    def from_url(cls, database_url: str) -> "SqlStore":
        engine, SessionLocal = make_engine(database_url)
        return cls(engine, SessionLocal)

    @contextmanager
    def _session(self):
        db: Session = self.SessionLocal()
        try:
            yield db
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Database error: %s", e)
            raise StorageUnavailable("database unavailable") from e
        finally:
            db.close()

    # ---- card keys
    def add_card_key(self, record: CardKeyCreate) -> str:
        return self.batch_add_card_keys([record])[0]

    def batch_add_card_keys(self, records: List[CardKeyCreate]) -> List[str]:
        if not records:
            return []
        for _ in range(MAX_TOKEN_ATTEMPTS):
            cards = [new_card_key(record) for record in records]
            try:
                with self._session() as db:
                    db.add_all([CardKeyRow(**card.model_dump()) for card in cards])
                    db.commit()
            except IntegrityError:
                # the only unique column we generate is secure_token
                logger.warning("Secure token collision, redrawing batch")
                continue
            return [card.secure_token for card in cards]
        raise DuplicateSecureToken("could not draw unused secure tokens")

    def get_card_key_by_token(self, secure_token: str) -> Optional[CardKey]:
        with self._session() as db:
            row = db.query(CardKeyRow).filter(CardKeyRow.secure_token == secure_token).first()
            return CardKey.model_validate(row) if row else None

    def get_card_key_by_id(self, card_id: str) -> Optional[CardKey]:
        with self._session() as db:
            row = db.query(CardKeyRow).filter(CardKeyRow.id == card_id).first()
            return CardKey.model_validate(row) if row else None

    def mark_card_key_as_used(self, secure_token: str) -> bool:
        with self._session() as db:
            count = (
                db.query(CardKeyRow)
                .filter(CardKeyRow.secure_token == secure_token, CardKeyRow.is_used.is_(False))
                .update({"is_used": True, "used_at": utcnow()}, synchronize_session=False)
            )
            db.commit()
            return count == 1

    def restore_card_key(self, secure_token: str) -> bool:
        with self._session() as db:
            count = (
                db.query(CardKeyRow)
                .filter(CardKeyRow.secure_token == secure_token, CardKeyRow.is_used.is_(True))
                .update({"is_used": False, "used_at": None}, synchronize_session=False)
            )
            db.commit()
            return count == 1

    def get_all_card_keys(self) -> List[CardKey]:
        with self._session() as db:
            rows = db.query(CardKeyRow).order_by(desc(CardKeyRow.created_at)).all()
            return [CardKey.model_validate(row) for row in rows]

    def delete_card_key(self, card_id: str) -> bool:
        with self._session() as db:
            count = (
                db.query(CardKeyRow)
                .filter(CardKeyRow.id == card_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return count == 1

    def get_stats(self) -> CardKeyStats:
        with self._session() as db:
            total = db.query(func.count(CardKeyRow.id)).scalar() or 0
            used = (
                db.query(func.count(CardKeyRow.id))
                .filter(CardKeyRow.is_used.is_(True))
                .scalar()
                or 0
            )
        return CardKeyStats(total=total, used=used, unused=total - used)

    def import_card_keys(self, cards: List[CardKey]) -> int:
        if not cards:
            return 0
        with self._session() as db:
            existing = db.query(CardKeyRow.id, CardKeyRow.secure_token).all()
            ids = {r.id for r in existing}
            tokens = {r.secure_token for r in existing}
            imported = 0
            for card in cards:
                if card.id in ids or card.secure_token in tokens:
                    continue
                db.add(CardKeyRow(**card.model_dump()))
                ids.add(card.id)
                tokens.add(card.secure_token)
                imported += 1
            db.commit()
        return imported

    # ---- admins
    def add_admin(self, username: str, password_hash: str) -> str:
        admin = new_admin(username, password_hash)
        try:
            with self._session() as db:
                db.add(AdminRow(**admin.model_dump()))
                db.commit()
        except IntegrityError as e:
            raise DuplicateUsername(username) from e
        return admin.id

    def get_admin_by_username(self, username: str) -> Optional[AdminAccount]:
        with self._session() as db:
            row = db.query(AdminRow).filter(AdminRow.username == username).first()
            return AdminAccount.model_validate(row) if row else None

    def update_admin_password(self, username: str, password_hash: str) -> bool:
        with self._session() as db:
            count = (
                db.query(AdminRow)
                .filter(AdminRow.username == username)
                .update({"password_hash": password_hash}, synchronize_session=False)
            )
            db.commit()
            return count == 1

    def count_admins(self) -> int:
        with self._session() as db:
            return db.query(func.count(AdminRow.id)).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()
