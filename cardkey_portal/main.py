import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from cardkey_portal.controllers.admin_controller import ensure_default_admin
from cardkey_portal.core.config import Settings, load_settings
from cardkey_portal.core.exceptions import CustomHTTPException
from cardkey_portal.core.rate_limiter import (
    RATE_LIMIT_PUBLIC,
    custom_rate_limit_handler,
    limiter,
)
from cardkey_portal.core.responses import error_response
from cardkey_portal.core.schemas import BaseResponse
from cardkey_portal.core.utils import configure_password_hashing
from cardkey_portal.routes import admins, keys
from cardkey_portal.storage.base import CardKeyStore, StorageUnavailable
from cardkey_portal.storage.factory import new_store

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None, store: Optional[CardKeyStore] = None
) -> FastAPI:
    """Composition root: settings and the storage backend are chosen here, once."""
    settings = settings or load_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    configure_password_hashing(settings.bcrypt_rounds)

    store = store or new_store(settings)

    app = FastAPI(
        title="Card Key Portal",
        version="1.0.0",
        description="Admin API and single-use redemption links for card keys",
        lifespan=lifespan,
        responses={
            400: {"model": BaseResponse},
            401: {"model": BaseResponse},
            404: {"model": BaseResponse},
            409: {"model": BaseResponse},
            422: {"model": BaseResponse},
            429: {"model": BaseResponse},
            500: {"model": BaseResponse},
            503: {"model": BaseResponse},
        },
    )
    app.state.settings = settings
    app.state.store = store

    # <========== Gzip Middleware ==========>
    app.add_middleware(GZipMiddleware, minimum_size=1000)  # Compress responses > 1KB

    # <========== CORS Configuration ==========>
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # <========== Rate limiting ==========>
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)

    # <========== API routes ==========>
    app.include_router(
        admins.router,
        prefix="/api/v1/admin",
        tags=["Admin"],
        responses={404: {"description": "Not found"}},
    )
    app.include_router(
        keys.router,
        prefix="/api/v1/key",
        tags=["Redemption"],
        responses={404: {"description": "Not found"}},
    )

    _register_exception_handlers(app)
    _register_system_routes(app)
    return app


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bootstrap the default admin on startup, release the store on shutdown."""
    settings: Settings = app.state.settings
    store: CardKeyStore = app.state.store

    if settings.bootstrap_default_admin:
        ensure_default_admin(store, settings)

    yield

    logger.info("Closing %s storage", store.backend_name)
    store.close()


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CustomHTTPException)
    async def custom_http_exception_handler(request: Request, exc: CustomHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": exc.detail.get("success", False),
                "message": exc.detail.get("message", "An error occurred"),
                "data": exc.detail.get("data", {}),
            },
            headers=exc.headers,
        )

    # Generic HTTPException handler for 404/405 from the router and other cases
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "message": (
                    exc.detail.get("message")
                    if isinstance(exc.detail, dict)
                    else str(exc.detail)
                ),
                "data": exc.detail.get("data") if isinstance(exc.detail, dict) else None,
            },
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_response("Invalid request", 422, {"errors": errors}),
        )

    @app.exception_handler(StorageUnavailable)
    async def storage_exception_handler(request: Request, exc: StorageUnavailable):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_response("Storage is unavailable, try again later", 503),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response("Internal server error", 500),
        )


def _register_system_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["System"], response_model=BaseResponse)
    @limiter.limit(RATE_LIMIT_PUBLIC)
    async def health_check(request: Request):
        return {
            "success": True,
            "message": "System is healthy",
            "data": {"storage": request.app.state.store.backend_name},
        }

    @app.get("/", response_model=BaseResponse, tags=["System"])
    @limiter.limit(RATE_LIMIT_PUBLIC)
    async def root(request: Request):
        return {
            "success": True,
            "message": "Welcome to the Card Key Portal API. Access /docs or /redoc for documentation.",
            "data": {
                "version": app.version,
                "documentation": {"swagger": "/docs", "redoc": "/redoc"},
            },
        }


# <========== Application Startup ==========>
if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    workers = int(os.getenv("WORKERS", 1))  # JSON storage supports a single worker only
    uvicorn.run(
        "cardkey_portal.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=port,
        workers=workers,
        reload=os.getenv("RELOAD", "false").lower() == "true",
    )
