"""
Interfaces of the services that the controllers drive.

Account storage, credential verification, email delivery and certificate
handling live outside of this application. Concrete implementations are
passed to :func:`gallery.factory.create_web_app` and retrieved in request
context with :func:`current_services`.
"""

from abc import ABC, abstractmethod
from typing import IO, List, Mapping, NamedTuple, Optional

from flask import current_app

from ..domain import Account, AuthenticatedUser, Certificate, Credential, \
    IdentityAssertion, Membership, MembershipRequest, Organization, Package, \
    User


class AuthenticationService(ABC):
    """Verifies credentials and mutates the credentials of accounts."""

    @abstractmethod
    def authenticate(self, username_or_email: str,
                     password: str) -> AuthenticatedUser:
        """
        Verify a username (or email) and password.

        Raises
        ------
        :class:`.BadCredentials`
        :class:`.AccountLocked`

        """

    @abstractmethod
    def authenticate_credential(self,
                                credential: Credential) -> AuthenticatedUser:
        """Authenticate with a credential that is already linked."""

    @abstractmethod
    def authenticate_external_login(self, assertion: IdentityAssertion) \
            -> Optional[AuthenticatedUser]:
        """Find the account linked to an external identity, if any."""

    @abstractmethod
    def read_external_login(self, provider: str,
                            params: Mapping[str, str]) -> IdentityAssertion:
        """
        Complete the provider handshake and return the external identity.

        Raises
        ------
        :class:`.AuthenticationFailed`
            The provider response could not be verified.

        """

    @abstractmethod
    def create_password_credential(self, password: str) -> Credential:
        """Hash a plain-text password into a new password credential."""

    @abstractmethod
    def register(self, username: str, email_address: str,
                 credential: Credential) -> AuthenticatedUser:
        """
        Create a new account holding ``credential``.

        Raises
        ------
        :class:`.EntityException`
            Duplicate username or email, or a policy violation.

        """

    @abstractmethod
    def add_credential(self, user: User, credential: Credential) -> None:
        """Attach a credential to a user."""

    @abstractmethod
    def remove_credential(self, user: User, credential: Credential) -> None:
        """Detach a credential from a user."""

    @abstractmethod
    def try_replace_credential(self, user: User,
                               credential: Credential) -> bool:
        """Replace the external credential of a user."""

    @abstractmethod
    def describe_credential(self, credential: Credential) -> str:
        """Human readable description used in notifications."""


class UserService(ABC):
    """Looks up accounts and manages organization membership."""

    @abstractmethod
    def find_by_username(self, username: str) -> Optional[Account]:
        """Find a user or an organization by name."""

    @abstractmethod
    def find_by_email_address(self, email_address: str) -> Optional[Account]:
        """Find a user or an organization by confirmed email address."""

    @abstractmethod
    def add_organization(self, name: str, email_address: str,
                         admin_user: User) -> Organization:
        """Create an organization administered by ``admin_user``."""

    @abstractmethod
    def add_membership_request(self, organization: Organization,
                               member_name: str,
                               is_admin: bool) -> MembershipRequest:
        """Invite a user to join an organization."""

    @abstractmethod
    def add_member(self, organization: Organization, member_name: str,
                   confirmation_token: str) -> Membership:
        """Accept a membership request."""

    @abstractmethod
    def reject_membership_request(self, organization: Organization,
                                  member_name: str,
                                  confirmation_token: str) -> None:
        """Reject a membership request."""

    @abstractmethod
    def cancel_membership_request(self, organization: Organization,
                                  member_name: str) -> User:
        """Withdraw a membership request; returns the invited user."""

    @abstractmethod
    def update_member(self, organization: Organization, member_name: str,
                      is_admin: bool) -> Membership:
        """Change the role of a member."""

    @abstractmethod
    def delete_member(self, organization: Organization,
                      member_name: str) -> User:
        """Remove a member; returns the removed user."""


class MessageService(ABC):
    """Sends notification emails. Delivery is fire-and-forget."""

    @abstractmethod
    def send_new_account_email(self, account: Account,
                               confirmation_url: str) -> None:
        """Ask the owner of a new account to confirm their address."""

    @abstractmethod
    def send_credential_added_notice(self, user: User,
                                     description: str) -> None:
        """Tell a user that a credential was added to their account."""

    @abstractmethod
    def send_credential_changed_notice(self, user: User,
                                       description: str) -> None:
        """Tell a user that their external credential was replaced."""

    @abstractmethod
    def send_signin_assistance_email(self, email_address: str,
                                     username: str) -> None:
        """Remind a user which external account they sign in with."""

    @abstractmethod
    def send_organization_membership_request(
            self, organization: Organization, new_member: User,
            admin_user: User, is_admin: bool, profile_url: str,
            confirm_url: str, reject_url: str) -> None:
        """Invite a user into an organization."""

    @abstractmethod
    def send_organization_membership_request_initiated_notice(
            self, organization: Organization, requesting_user: User,
            pending_user: User, is_admin: bool, cancel_url: str) -> None:
        """Tell organization admins that an invitation was sent."""

    @abstractmethod
    def send_organization_member_updated_notice(
            self, organization: Organization, membership: Membership) -> None:
        """Tell an organization that a membership changed."""

    @abstractmethod
    def send_organization_membership_request_rejected_notice(
            self, organization: Organization, member: User) -> None:
        """Tell an organization that an invitation was declined."""

    @abstractmethod
    def send_organization_membership_request_cancelled_notice(
            self, organization: Organization, member: User) -> None:
        """Tell a user that their invitation was withdrawn."""

    @abstractmethod
    def send_organization_member_removed_notice(
            self, organization: Organization, member: User) -> None:
        """Tell an organization that a member left or was removed."""


class CertificateService(ABC):
    """Stores certificates and their registration to accounts."""

    @abstractmethod
    def add_certificate(self, upload: IO[bytes]) -> Certificate:
        """Parse and store an uploaded certificate file."""

    @abstractmethod
    def activate_certificate(self, thumbprint: str, account: Account) -> None:
        """Register a stored certificate to an account."""

    @abstractmethod
    def deactivate_certificate(self, thumbprint: str,
                               account: Account) -> None:
        """Unregister a certificate from an account."""

    @abstractmethod
    def get_certificates(self, account: Account) -> List[Certificate]:
        """Certificates registered to an account."""


class PackageService(ABC):
    """Read access to packages."""

    @abstractmethod
    def find_packages_by_owner(self, account: Account,
                               include_unlisted: bool = True) -> List[Package]:
        """Latest version of each package owned by ``account``."""


class Services(NamedTuple):
    """The collaborators available to a running application."""

    auth: AuthenticationService
    users: UserService
    messages: MessageService
    certificates: CertificateService
    packages: PackageService


def init_app(app: object, services: Services) -> None:
    """Attach service implementations to an application."""
    app.extensions['gallery.services'] = services  # type: ignore


def current_services() -> Services:
    """Get the services of the current application."""
    services: Services = current_app.extensions['gallery.services']
    return services
