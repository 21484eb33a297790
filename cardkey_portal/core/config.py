import os
from typing import List, Literal, Optional
from dotenv import load_dotenv
from fastapi import Request
from pydantic import BaseModel

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    secret_key: str
    algorithm: str = "HS256"
    session_ttl_hours: int = 24
    bcrypt_rounds: int = 12

    storage_backend: Literal["json", "redis", "sql"] = "json"
    data_file: str = "./cardkeys.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = ""
    database_url: str = "sqlite:///./cardkeys.db"

    public_base_url: str = "http://localhost:8000"
    redeem_direct_fetch: Literal["consume", "reveal", "deny"] = "consume"

    bootstrap_default_admin: bool = True
    default_admin_username: str = "admin"
    default_admin_password: str = "admin123"

    cookie_secure: bool = False
    allowed_origins: List[str] = ["*"]

    rate_limit_enabled: bool = True

    log_level: str = "INFO"


def load_settings(secret_key: Optional[str] = None) -> Settings:
    secret_key = secret_key or os.getenv("SECRET_KEY")
    if not secret_key:
        raise ValueError("SECRET_KEY must be set in the .env file")

    return Settings(
        secret_key=secret_key,
        algorithm=os.getenv("ALGORITHM", "HS256"),
        session_ttl_hours=int(os.getenv("SESSION_TTL_HOURS", 24)),
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", 12)),
        storage_backend=os.getenv("STORAGE_BACKEND", "json").lower(),
        data_file=os.getenv("DATA_FILE", "./cardkeys.json"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        redis_key_prefix=os.getenv("REDIS_KEY_PREFIX", ""),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./cardkeys.db"),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
        redeem_direct_fetch=os.getenv("REDEEM_DIRECT_FETCH", "consume").lower(),
        bootstrap_default_admin=_env_bool("BOOTSTRAP_DEFAULT_ADMIN", "true"),
        default_admin_username=os.getenv("DEFAULT_ADMIN_USERNAME", "admin"),
        default_admin_password=os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123"),
        cookie_secure=_env_bool("COOKIE_SECURE", "false"),
        allowed_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
        rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", "true"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
