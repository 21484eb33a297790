import logging

from fastapi import Request

from cardkey_portal.core.config import Settings
from .base import CardKeyStore

logger = logging.getLogger(__name__)


def new_store(settings: Settings) -> CardKeyStore:
    """Build the configured backend. Called once by the app factory."""
    backend = settings.storage_backend
    if backend == "redis":
        from .redis_store import RedisStore

        store = RedisStore.from_url(settings.redis_url, key_prefix=settings.redis_key_prefix)
        logger.info("Using Redis storage at %s", settings.redis_url.split("@")[-1])
    elif backend == "sql":
        from .sql_store import SqlStore

        store = SqlStore.from_url(settings.database_url)
        logger.info("Using SQL storage (%s)", store.engine.url.get_backend_name())
    elif backend == "json":
        from .json_store import JsonFileStore

        store = JsonFileStore(settings.data_file)
        logger.info("Using JSON file storage at %s (single process only)", store.path)
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND {backend!r}")
    return store


# Dependency to get the store built by the app factory
def get_store(request: Request) -> CardKeyStore:
    return request.app.state.store
