"""Error taxonomy for authentication, SSO and user management.

Every error carries a ``user_message`` that is safe to show to the caller.
Details meant for operators go to the log, never into ``user_message``.
"""

from enum import Enum

GENERIC_FAILURE_MESSAGE = "Authentication failed. Please try again."


class AuthError(Exception):
    """Base class for expected, caller-visible failures."""

    default_message = GENERIC_FAILURE_MESSAGE

    def __init__(self, user_message: str | None = None):
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class Unauthenticated(AuthError):
    default_message = "You are not logged in."


class Forbidden(AuthError):
    default_message = "Permission denied. You don't have access to this feature."


class ValidationFailed(AuthError):
    default_message = "Invalid request."


class NotFound(AuthError):
    default_message = "Not found."


class Expired(AuthError):
    default_message = "Expired."


class Conflict(AuthError):
    default_message = "The request conflicts with the current state."


class SsoDisabled(AuthError):
    default_message = "Entra ID SSO is not enabled"


class SsoMisconfigured(AuthError):
    default_message = "Entra ID SSO is not properly configured"


class ProviderError(AuthError):
    """Upstream identity provider rejected the request or was unreachable."""


# OIDC callback failures


class InvalidSession(NotFound):
    default_message = "Invalid or expired authentication session"


class SessionExpired(Expired):
    default_message = "Authentication session expired"


class TokenExchangeFailed(ProviderError):
    pass


class NotAuthorized(Forbidden):
    default_message = (
        "You are not authorized to access this application. "
        "Please contact your administrator."
    )


class ProvisioningDisabled(Forbidden):
    default_message = (
        "Your account has not been provisioned. Please contact your administrator."
    )


# User management


class LastAdminError(Conflict):
    default_message = "Cannot remove the last admin. At least one admin must remain."


# Login code bridge


class RejectReason(Enum):
    """Why a login code exchange was refused (logged, never shown verbatim)."""

    INVALID_OR_USED = "invalid_or_used"
    EXPIRED = "expired"
    USER_UNAVAILABLE = "user_unavailable"


class LoginCodeRejected(AuthError):
    """Login code could not be exchanged.

    Invalid, used and expired codes share one caller-visible message so the
    channel offers no oracle for guessing codes.
    """

    default_message = "Invalid or expired login code"

    def __init__(self, reason: RejectReason, user_message: str | None = None):
        self.reason = reason
        if user_message is None and reason is RejectReason.USER_UNAVAILABLE:
            user_message = "User not found or inactive"
        super().__init__(user_message)
