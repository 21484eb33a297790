import secrets
from datetime import datetime, timezone
from typing import Optional
from passlib.context import CryptContext

SECURE_TOKEN_BYTES = 32  # 256 bits, 64 hex chars


def make_pwd_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


pwd_context = make_pwd_context()


def configure_password_hashing(rounds: int) -> None:
    global pwd_context
    pwd_context = make_pwd_context(rounds)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # unknown or corrupted hash format
        return False


def generate_secure_token() -> str:
    return secrets.token_hex(SECURE_TOKEN_BYTES)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive timestamps (SQLite rows, hand-edited backups) are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
