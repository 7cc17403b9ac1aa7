"""
SSO error taxonomy.

Services raise these; the handlers registered in app.main turn them into the
``{"success": false, "error": <code>, "message": ...}`` envelope.
"""

from typing import Optional

from fastapi import status


class SSOError(Exception):
    """Base class for failures surfaced to SSO API callers."""

    code = "SERVER_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class SSOValidationError(SSOError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class ProviderNotConfiguredError(SSOError):
    code = "NOT_CONFIGURED"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "SSO not configured for this domain"


class ProviderNotFoundError(SSOError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Invalid provider"


class ProviderConflictError(SSOError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_message = "SSO provider already exists for this domain"


class UnauthorizedError(SSOError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class ProvisioningDisabledError(SSOError):
    code = "PROVISIONING_DISABLED"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "No account exists for this user and auto-provisioning is disabled"


class UpstreamError(SSOError):
    """
    The identity provider did not yield a verifiable identity.

    The message is logged; callers only ever see the generic text.
    """

    code = "UPSTREAM_FAILURE"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "SSO authentication failed"

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.default_message}
