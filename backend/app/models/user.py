import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, func

from app.db.base_class import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class SubscriptionTier(str, Enum):
    FREE = "FREE"
    SOLO_AGENT = "SOLO_AGENT"
    PROFESSIONAL = "PROFESSIONAL"
    TEAM_ENTERPRISE = "TEAM_ENTERPRISE"
    WHITE_LABEL = "WHITE_LABEL"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=False)  # lower-case
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    license_number = Column(String(100), nullable=True)
    role = Column(String(20), default=UserRole.USER.value, nullable=False)
    subscription_tier = Column(String(30), default=SubscriptionTier.FREE.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=_utcnow, nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Weak link to the provider that authenticated this user; never re-pointed by SSO login
    sso_provider_id = Column(
        String(36),
        ForeignKey("sso_providers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Case-insensitive uniqueness; lookups match on lower(email)
    __table_args__ = (
        Index("uq_users_email_lower", func.lower(email), unique=True),
    )

    def __repr__(self):
        return f"<User id={self.id} role={self.role}>"
