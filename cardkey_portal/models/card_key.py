from sqlalchemy import Boolean, Column, DateTime, Index, String, Text
from cardkey_portal.core.database import Base


class CardKeyRow(Base):
    __tablename__ = "card_keys"

    id = Column(String(36), primary_key=True)
    tenant_url = Column(Text, nullable=False)
    access_token = Column(Text, nullable=False)
    email = Column(Text, nullable=False)
    balance_url = Column(Text, nullable=True)
    expiry_date = Column(Text, nullable=False)
    query_params = Column(Text, nullable=False)
    secure_token = Column(String(64), unique=True, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_card_keys_secure_token", "secure_token"),
        Index("idx_card_keys_is_used", "is_used"),
        Index("idx_card_keys_created_at", "created_at"),
    )
