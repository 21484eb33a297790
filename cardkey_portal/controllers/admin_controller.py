import logging
from fastapi import status

from cardkey_portal.core.auth import authenticate_admin
from cardkey_portal.core.config import Settings
from cardkey_portal.core.exceptions import (
    ConflictError,
    CustomHTTPException,
    UnauthorizedError,
    ValidationFailed,
)
from cardkey_portal.core.responses import success_response
from cardkey_portal.core.utils import hash_password, verify_password
from cardkey_portal.schemas.admin_schema import (
    AdminAccount,
    AdminLogin,
    AdminPasswordUpdate,
    AdminResponseData,
)
from cardkey_portal.storage.base import CardKeyStore, DuplicateUsername

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def ensure_default_admin(store: CardKeyStore, settings: Settings) -> bool:
    """Create the well-known default admin if no admin exists yet.

    Returns True when an account was created. The credentials are public
    knowledge, so the operator has to rotate them right away.
    """
    if store.count_admins() > 0:
        return False
    try:
        store.add_admin(
            settings.default_admin_username,
            hash_password(settings.default_admin_password),
        )
    except DuplicateUsername:
        return False
    logger.warning(
        "Created default admin account %r. Log in and change its password immediately.",
        settings.default_admin_username,
    )
    return True


def init_admin(store: CardKeyStore, settings: Settings):
    if not ensure_default_admin(store, settings):
        raise ConflictError("Admin account already exists")
    return success_response(
        message="Default admin account created",
        data={
            "username": settings.default_admin_username,
            "password": settings.default_admin_password,
            "note": "Change this password after the first login",
        },
        status_code=status.HTTP_201_CREATED,
    )


def login_admin(credentials: AdminLogin, store: CardKeyStore, settings: Settings):
    result = authenticate_admin(store, credentials.username, credentials.password, settings)
    if result is None:
        raise UnauthorizedError("Invalid username or password")

    admin: AdminAccount = result["admin"]
    logger.info("Admin %r logged in", admin.username)
    response = success_response(
        message="Login successful",
        data={"admin": AdminResponseData.model_validate(admin).model_dump(mode="json")},
    )
    return response, result["token"]


def update_admin_password(
    admin: AdminAccount, password_update: AdminPasswordUpdate, store: CardKeyStore
):
    if len(password_update.new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"New password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if not verify_password(password_update.current_password, admin.password_hash):
        raise ValidationFailed("Current password is incorrect")

    if not store.update_admin_password(admin.username, hash_password(password_update.new_password)):
        raise CustomHTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to update password",
        )
    logger.info("Admin %r changed password", admin.username)
    return success_response(message="Password updated successfully", data={"id": admin.id})
