import os
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from cardkey_portal.core.auth import SESSION_COOKIE, verify_session_token
from cardkey_portal.core.responses import error_response

RATE_LIMIT_LOGIN = os.getenv("RATE_LIMIT_LOGIN", "5/minute")
RATE_LIMIT_PUBLIC = os.getenv("RATE_LIMIT_PUBLIC", "60/minute")
RATE_LIMIT_ADMIN = os.getenv("RATE_LIMIT_ADMIN", "300/minute")


# Custom key function for rate limiting
def get_rate_limit_key(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    token = request.cookies.get(SESSION_COOKIE)
    if settings is not None and token:
        payload = verify_session_token(token, settings)
        if payload:
            return f"admin:{payload['sub']}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_rate_limit_key,
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    enabled=True,
)


async def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content=error_response(
            "Too many requests. Please try again later.",
            429,
            {"limit": str(exc.detail)},
        ),
    )
