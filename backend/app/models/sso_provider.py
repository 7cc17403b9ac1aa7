"""
SSO Provider Model

One row per identity provider, routed to by the organisation's email domain.
Client secrets are stored Fernet-encrypted (see app.core.encryption).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, String, Boolean, DateTime, Text, Index, text

from app.core.encryption import EncryptedString
from app.db.base_class import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class SSOProviderType(str, Enum):
    SAML = "SAML"
    OAUTH2 = "OAUTH2"
    OIDC = "OIDC"


class SSOProvider(Base):
    """
    SSO provider configuration.

    At most one active provider per domain; enforced by the registry's
    pre-read and by the partial unique index below. Providers are
    deactivated rather than deleted so linked users keep their reference.
    """
    __tablename__ = "sso_providers"

    id = Column(String(36), primary_key=True, default=_new_id)

    name = Column(String(100), nullable=False)
    type = Column(String(20), nullable=False)  # SAML, OAUTH2, OIDC
    domain = Column(String(255), nullable=False, index=True)  # always lower-case
    sso_url = Column(String(500), nullable=False)

    # OAuth2 / OIDC
    client_id = Column(String(255), nullable=True)
    client_secret = Column(EncryptedString(1000), nullable=True)
    token_url = Column(String(500), nullable=True)
    userinfo_url = Column(String(500), nullable=True)
    scopes = Column(String(255), default="openid email profile", nullable=False)

    # SAML
    certificate = Column(Text, nullable=True)  # stored, not used for validation
    slo_url = Column(String(500), nullable=True)

    # User provisioning
    auto_provision = Column(Boolean, default=True, nullable=False)
    default_role = Column(String(20), default="USER", nullable=False)
    default_tier = Column(String(30), default="FREE", nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=_utcnow, nullable=True)

    __table_args__ = (
        Index(
            "uq_sso_providers_active_domain",
            "domain",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    @property
    def has_client_secret(self) -> bool:
        return bool(self.client_secret)

    def __repr__(self):
        return f"<SSOProvider domain={self.domain} type={self.type} active={self.is_active}>"
