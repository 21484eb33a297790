from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

from cardkey_portal.core.utils import as_utc


class AdminLogin(BaseModel):
    username: constr(strip_whitespace=True, min_length=1, max_length=50)  # type: ignore
    password: constr(min_length=1, max_length=255)  # type: ignore


class AdminPasswordUpdate(BaseModel):
    current_password: constr(min_length=1, max_length=255) = Field(alias="currentPassword")  # type: ignore
    new_password: constr(min_length=1, max_length=255) = Field(alias="newPassword")  # type: ignore
    model_config = ConfigDict(populate_by_name=True)


class AdminAccount(BaseModel):
    id: str
    username: str
    password_hash: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at")
    @classmethod
    def naive_created_at_is_utc(cls, v):
        return as_utc(v)


class AdminResponseData(BaseModel):
    id: str
    username: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
