"""Provides exceptions raised by services and the sign-in flow."""

from ..domain import LinkingOutcome


class AuthenticationFailed(RuntimeError):
    """Failed to authenticate user with provided credentials."""


class BadCredentials(AuthenticationFailed):
    """The username, email or password is not correct."""


class AccountLocked(AuthenticationFailed):
    """Too many failed attempts; the account is temporarily locked."""

    def __init__(self, minutes: int, *args: object) -> None:
        super().__init__(f'Account locked for {minutes} minute(s)', *args)
        self.minutes = minutes


class LinkingConflict(RuntimeError):
    """The external credential cannot be linked to this account."""


class AccountAlreadyLinked(LinkingConflict):
    """The account is already linked to a different external account."""

    outcome = LinkingOutcome.ALREADY_LINKED

    def __init__(self, email_address: str) -> None:
        super().__init__(email_address)
        self.email_address = email_address


class AccountIsOrganization(LinkingConflict):
    """Organizations cannot link external credentials."""

    outcome = LinkingOutcome.ACCOUNT_IS_ORGANIZATION


class PendingLoginExpired(RuntimeError):
    """The pending external login is missing, expired or already used."""

    outcome = LinkingOutcome.EXPIRED_PENDING_LOGIN


class EntityException(ValueError):
    """A validation failure carrying a message that is safe to show users."""


class PermissionDenied(RuntimeError):
    """The current user may not perform the requested action."""


class SessionCreationFailed(RuntimeError):
    """Failed to create a session in the session store."""


class SessionDeletionFailed(RuntimeError):
    """Failed to delete a session in the session store."""


class UnknownSession(RuntimeError):
    """Failed to locate a session in the session store."""


class InvalidToken(ValueError):
    """A signed cookie is malformed, forged or expired."""
