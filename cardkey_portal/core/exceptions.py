from typing import Any, Dict, Optional
from fastapi import HTTPException, status
from .responses import error_response


class CustomHTTPException(HTTPException):
    def __init__(
        self,
        status_code: int,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(
            status_code=status_code,
            detail=error_response(message, status_code, details),
            headers=headers,
        )


class UnauthorizedError(CustomHTTPException):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message)


class NotFoundError(CustomHTTPException):
    def __init__(self, message: str):
        super().__init__(status.HTTP_404_NOT_FOUND, message)


class ConflictError(CustomHTTPException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(status.HTTP_409_CONFLICT, message, details)


class ValidationFailed(CustomHTTPException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, details)
