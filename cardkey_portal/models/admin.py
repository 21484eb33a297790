from sqlalchemy import Column, DateTime, Index, String
from cardkey_portal.core.database import Base


class AdminRow(Base):
    __tablename__ = "admins"

    id = Column(String(36), primary_key=True)
    username = Column(String(50), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_admins_username", "username"),)
