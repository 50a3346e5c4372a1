"""Defines the core data structures for the gallery accounts application."""

from typing import Any, Dict, List, NamedTuple, Optional, Union
from datetime import datetime
from enum import Enum

from pytz import UTC


class CredentialTypes:
    """Known credential type names and prefixes."""

    PASSWORD_PREFIX = 'password.'
    EXTERNAL_PREFIX = 'external.'

    PASSWORD_V3 = 'password.v3'
    MICROSOFT_ACCOUNT = 'external.MicrosoftAccount'
    AZURE_ACTIVE_DIRECTORY = 'external.AzureActiveDirectory'


class Credential(NamedTuple):
    """A stored authentication factor belonging to exactly one account."""

    type: str
    """E.g. ``password.v3`` or ``external.MicrosoftAccount``."""

    value: str = ''
    """Hashed secret, or the provider's identifier for external credentials."""

    identity: Optional[str] = None
    """Display identity, e.g. ``John Doe <john@doe.com>``."""

    credential_key: Optional[int] = None

    @property
    def is_external(self) -> bool:
        """Whether this credential was issued by an external provider."""
        return self.type.lower().startswith(CredentialTypes.EXTERNAL_PREFIX)

    @property
    def is_password(self) -> bool:
        """Whether this is a password credential."""
        return self.type.lower().startswith(CredentialTypes.PASSWORD_PREFIX)

    @property
    def is_azure_active_directory(self) -> bool:
        """Whether this credential is an Azure Active Directory account."""
        return self.type.lower() == \
            CredentialTypes.AZURE_ACTIVE_DIRECTORY.lower()


class User(NamedTuple):
    """A user account."""

    username: str
    email_address: Optional[str] = None
    is_administrator: bool = False
    credentials: List[Credential] = []
    confirmed: bool = True
    is_deleted: bool = False
    unconfirmed_email_address: Optional[str] = None
    email_confirmation_token: Optional[str] = None

    @property
    def is_organization(self) -> bool:
        """Users are never organizations."""
        return False

    def get_password_credential(self) -> Optional[Credential]:
        """The password credential of this user, if any."""
        return next((c for c in self.credentials if c.is_password), None)

    def get_azure_active_directory_credential(self) -> Optional[Credential]:
        """The Azure Active Directory credential of this user, if any."""
        return next((c for c in self.credentials
                     if c.is_azure_active_directory), None)

    @property
    def has_external_credential(self) -> bool:
        """Whether at least one external credential is linked."""
        return any(c.is_external for c in self.credentials)


class Membership(NamedTuple):
    """A user's membership in an organization."""

    organization: str
    """Username of the organization."""

    member: User
    is_admin: bool = False


class MembershipRequest(NamedTuple):
    """A pending request for a user to join an organization."""

    organization: str
    new_member: User
    is_admin: bool = False
    confirmation_token: str = ''


class Organization(NamedTuple):
    """An organization account; owned and managed by its members."""

    username: str
    email_address: Optional[str] = None
    members: List[Membership] = []
    member_requests: List[MembershipRequest] = []
    confirmed: bool = True
    is_deleted: bool = False
    unconfirmed_email_address: Optional[str] = None
    email_confirmation_token: Optional[str] = None
    restricted_to_tenant: bool = False

    @property
    def is_organization(self) -> bool:
        """Organizations are always organizations."""
        return True

    @property
    def is_administrator(self) -> bool:
        """Organizations cannot be site administrators."""
        return False

    @property
    def credentials(self) -> List[Credential]:
        """Organizations cannot sign in, so they hold no credentials."""
        return []

    def get_membership(self, username: str) -> Optional[Membership]:
        """Find the membership of ``username``, if any."""
        return next((m for m in self.members
                     if m.member.username == username), None)


Account = Union[User, Organization]


class Certificate(NamedTuple):
    """A code signing certificate registered to an account."""

    thumbprint: str
    subject: str = ''
    issuer: str = ''
    expiration: Optional[datetime] = None
    is_active: bool = True

    @property
    def expired(self) -> bool:
        """Whether the certificate has passed its expiration date."""
        if self.expiration is None:
            return False
        return self.expiration <= datetime.now(tz=UTC)


class PackageRegistration(NamedTuple):
    """The identity of a package across all of its versions."""

    id: str
    owners: List[Account] = []
    is_verified: bool = False


class Package(NamedTuple):
    """A single version of a package."""

    id: str
    version: str
    title: str = ''
    description: str = ''
    tags: Optional[str] = None
    flattened_authors: str = ''
    min_client_version: Optional[str] = None
    listed: bool = True
    is_semver2: bool = False
    is_latest: bool = False
    is_latest_stable: bool = False
    is_latest_semver2: bool = False
    is_latest_stable_semver2: bool = False
    user: Optional[User] = None
    """The user who pushed this version."""

    registration: Optional[PackageRegistration] = None


class IdentityAssertion(NamedTuple):
    """An external identity awaiting linking, as issued by a provider."""

    provider: str
    credential: Credential
    claims: Dict[str, Any] = {}

    @property
    def identity(self) -> Optional[str]:
        """The display identity of the external credential."""
        return self.credential.identity


class AuthenticatedUser(NamedTuple):
    """A verified account together with the credential that verified it."""

    user: User
    credential_used: Credential


class Session(NamedTuple):
    """An authenticated session in the distributed session store."""

    session_id: str
    username: str
    start_time: datetime
    end_time: Optional[datetime] = None
    credential_type: Optional[str] = None
    nonce: Optional[str] = None

    @property
    def expires(self) -> Optional[int]:
        """Seconds remaining in this session."""
        if self.end_time is None:
            return None
        return int((self.end_time - datetime.now(tz=UTC)).total_seconds())

    @property
    def expired(self) -> bool:
        """Expired sessions are no longer valid."""
        return bool(self.end_time and self.end_time <= datetime.now(tz=UTC))


class LinkingOutcome(Enum):
    """Outcome of an attempt to associate an external credential."""

    SUCCESS = 'success'
    EXPIRED_PENDING_LOGIN = 'expired_pending_login'
    ALREADY_LINKED = 'already_linked'
    ACCOUNT_IS_ORGANIZATION = 'account_is_organization'
