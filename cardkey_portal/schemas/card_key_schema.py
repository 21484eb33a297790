from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, constr, field_validator, model_validator

from cardkey_portal.core.utils import as_utc

NonEmpty = constr(strip_whitespace=True, min_length=1)


class CardKeyCreate(BaseModel):
    tenant_url: NonEmpty  # type: ignore
    access_token: NonEmpty  # type: ignore
    email: NonEmpty  # type: ignore
    balance_url: Optional[str] = None
    expiry_date: NonEmpty  # type: ignore
    query_params: NonEmpty  # type: ignore

    @field_validator("balance_url")
    @classmethod
    def blank_balance_url_is_none(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None


class CardKey(BaseModel):
    id: str
    tenant_url: str
    access_token: str
    email: str
    balance_url: Optional[str] = None
    expiry_date: str
    query_params: str
    secure_token: str
    is_used: bool = False
    created_at: datetime
    used_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "used_at")
    @classmethod
    def naive_timestamps_are_utc(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def used_at_matches_is_used(self):
        if self.is_used != (self.used_at is not None):
            raise ValueError("used_at must be set exactly when is_used is true")
        return self


class CardKeyPublic(BaseModel):
    """What a link holder gets back: never the id or the secure token."""

    tenant_url: str
    access_token: str
    email: str
    balance_url: Optional[str] = None
    expiry_date: str
    query_params: str
    is_used: bool
    created_at: datetime
    used_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class CardKeyMasked(BaseModel):
    is_used: bool
    expiry_date: str
    created_at: datetime
    requires_confirmation: bool = True
    model_config = ConfigDict(from_attributes=True)


class CardKeyStats(BaseModel):
    total: int
    used: int
    unused: int


class CardKeyImport(BaseModel):
    text: constr(strip_whitespace=True, min_length=1)  # type: ignore
    single: bool = False


class CardKeyActionType(str, Enum):
    mark_used = "mark_used"
    restore = "restore"


class CardKeyAction(BaseModel):
    action: CardKeyActionType


class CardKeyStatusFilter(str, Enum):
    all = "all"
    used = "used"
    unused = "unused"


class CardKeyExportKind(str, Enum):
    links = "links"
    details = "details"


class CardKeyBackup(BaseModel):
    exportTime: Optional[datetime] = None
    version: str = "1.0"
    stats: Optional[CardKeyStats] = None
    cardKeys: List[CardKey] = Field(default_factory=list)
