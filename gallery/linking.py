"""
Sign-in, registration and external account linking decisions.

Every sign-in path goes through the same steps::

    START -> CREDENTIAL_CHECKED -> LINK_EVALUATED | UNLINKED
          -> POLICY_CHECKED -> SESSION_ESTABLISHED | CHALLENGED

Failures along the way end in REJECTED and are raised as the exceptions in
:mod:`gallery.services.exceptions`. A session is only established once the
credential is verified, any linking went through without a conflict, and the
enforced provider policy for administrators is satisfied.

The policy is passed in by the caller on every decision; the engine does not
read application configuration.
"""

import logging
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional
from urllib.parse import quote_plus

from .domain import AuthenticatedUser, CredentialTypes, IdentityAssertion, \
    LinkingOutcome, Session, User
from .identity import get_identity_information
from .services import AuthenticationService, MessageService, UserService
from .services import notices
from .services.exceptions import AccountAlreadyLinked, \
    AccountIsOrganization, EntityException, PendingLoginExpired
from .services.pending_logins import PendingLoginStore
from .services.providers import ProviderRegistry
from .services.sessions import SessionStore
from .viewmodels import AssociateExternalAccountViewModel

logger = logging.getLogger(__name__)


class State(Enum):
    """States of a sign-in decision."""

    START = 'start'
    CREDENTIAL_CHECKED = 'credential_checked'
    LINK_EVALUATED = 'link_evaluated'
    UNLINKED = 'unlinked'
    POLICY_CHECKED = 'policy_checked'
    SESSION_ESTABLISHED = 'session_established'
    CHALLENGED = 'challenged'
    REJECTED = 'rejected'


class Decision(NamedTuple):
    """The terminal state of a sign-in flow and what it produced."""

    state: State
    authenticated: Optional[AuthenticatedUser] = None
    session: Optional[Session] = None
    challenge_provider: Optional[str] = None
    """Set when ``state`` is ``CHALLENGED``."""

    outcome: Optional[LinkingOutcome] = None
    association: Optional[AssociateExternalAccountViewModel] = None
    """Set when an external identity is not linked to any account yet."""

    notices: Optional[Dict[str, str]] = None


def format_lock_time(minutes: int) -> str:
    """Render the time remaining on an account lock."""
    return 'a minute' if minutes == 1 else f'{minutes} minutes'


def lock_message(minutes: int) -> str:
    """Form error shown when an account is locked."""
    return ('Your account has been locked due to too many failed login'
            f' attempts. Please try again in {format_lock_time(minutes)}.')


def parse_enforced_providers(enforced_providers: Optional[str]) -> List[str]:
    """Split the ``;``-delimited policy, ignoring empty entries."""
    if not enforced_providers:
        return []
    return [p.strip() for p in enforced_providers.split(';') if p.strip()]


def should_challenge_enforced_provider(
        enforced_providers: Optional[str],
        authenticated: AuthenticatedUser) -> Optional[str]:
    """
    Check the enforced provider policy for administrators.

    Returns
    -------
    str or None
        The provider to challenge, if the credential used is not one of the
        enforced providers. ``None`` if sign-in may complete.

    """
    providers = parse_enforced_providers(enforced_providers)
    used = authenticated.credential_used.type
    if not providers or used is None \
            or not authenticated.user.is_administrator:
        return None
    used = used.lower()
    if any(p.lower() == used
           or (CredentialTypes.EXTERNAL_PREFIX + p).lower() == used
           for p in providers):
        return None
    logger.info('Administrator %s must sign in with %s',
                authenticated.user.username, providers[0])
    return providers[0]


class LinkingEngine(object):
    """Drives the services through one sign-in, registration or link."""

    def __init__(self, auth: AuthenticationService, users: UserService,
                 messages: MessageService, sessions: SessionStore,
                 pending_logins: PendingLoginStore,
                 providers: ProviderRegistry) -> None:
        self.auth = auth
        self.users = users
        self.messages = messages
        self.sessions = sessions
        self.pending_logins = pending_logins
        self.providers = providers

    def authenticate(self, username_or_email: str, password: str,
                     linking: bool = False,
                     pending_cookie: Optional[str] = None,
                     enforced_providers: Optional[str] = None) -> Decision:
        """
        Sign in with a username (or email) and password.

        When ``linking``, the pending external identity is attached to the
        account and its password credential is removed.

        Raises
        ------
        :class:`.PendingLoginExpired`
        :class:`.BadCredentials`
        :class:`.AccountLocked`
        :class:`.AccountAlreadyLinked`

        """
        if linking and self.pending_logins.peek(pending_cookie) is None:
            raise PendingLoginExpired('No external login to link')

        authenticated = self.auth.authenticate(username_or_email, password)
        logger.debug('%s: %s', State.CREDENTIAL_CHECKED,
                     authenticated.user.username)
        if linking:
            authenticated = self._associate(authenticated, pending_cookie)
        return self._complete(authenticated, enforced_providers)

    def register(self, username: str, email_address: str,
                 password: Optional[str] = None, linking: bool = False,
                 pending_cookie: Optional[str] = None,
                 enforced_providers: Optional[str] = None,
                 confirm_email_addresses: bool = True,
                 confirmation_url: Optional[Callable[[User], str]] = None) \
            -> Decision:
        """
        Create an account, with a password or with the pending identity.

        Raises
        ------
        :class:`.PendingLoginExpired`
        :class:`.EntityException`
            The message comes from the account service and is shown as is.

        """
        assertion: Optional[IdentityAssertion] = None
        if linking:
            assertion = self.pending_logins.consume(pending_cookie)
            if assertion is None:
                raise PendingLoginExpired('No external login to register')
            credential = assertion.credential
        else:
            credential = self.auth.create_password_credential(password or '')

        try:
            authenticated = self.auth.register(username, email_address,
                                               credential)
        except EntityException:
            if assertion is not None:
                self.pending_logins.restore(pending_cookie, assertion)
            raise
        user = authenticated.user
        logger.info('Registered %s', user.username)

        if confirm_email_addresses and user.unconfirmed_email_address:
            url = confirmation_url(user) if confirmation_url else ''
            self.messages.send_new_account_email(user, url)
        return self._complete(authenticated, enforced_providers)

    def link_external_account(self, pending_cookie: Optional[str],
                              enforced_providers: Optional[str] = None) \
            -> Decision:
        """
        Resolve a pending external identity after the provider handshake.

        If the identity is already linked, sign in. Otherwise describe the
        identity so the user can link it to an account or register.

        Raises
        ------
        :class:`.PendingLoginExpired`

        """
        assertion = self.pending_logins.peek(pending_cookie)
        if assertion is None:
            raise PendingLoginExpired('No external login')

        authenticated = self.auth.authenticate_external_login(assertion)
        if authenticated is not None:
            if self.pending_logins.consume(pending_cookie) is None:
                raise PendingLoginExpired('External login already used')
            return self._complete(authenticated, enforced_providers)

        association = self._describe(assertion)
        return Decision(State.UNLINKED, association=association,
                        outcome=association.existing_user_linking_error)

    def describe_external_account(self, pending_cookie: Optional[str]) \
            -> Optional[AssociateExternalAccountViewModel]:
        """Describe the pending external identity without consuming it."""
        assertion = self.pending_logins.peek(pending_cookie)
        if assertion is None:
            return None
        return self._describe(assertion)

    def _describe(self, assertion: IdentityAssertion) \
            -> AssociateExternalAccountViewModel:
        provider = self.providers.get(assertion.provider)
        extract = provider.identity_information if provider else None
        info = get_identity_information(assertion, extract)

        existing = None
        if info.email:
            existing = self.users.find_by_email_address(info.email)
        error: Optional[LinkingOutcome] = None
        if existing is not None:
            if existing.is_organization:
                error = LinkingOutcome.ACCOUNT_IS_ORGANIZATION
            elif existing.has_external_credential \
                    and not existing.is_administrator:  # type: ignore
                error = LinkingOutcome.ALREADY_LINKED

        return AssociateExternalAccountViewModel(
            provider_account_noun=provider.account_noun if provider
            else assertion.provider,
            account_name=info.name,
            email_address=info.email,
            found_existing_user=existing is not None,
            existing_user_linking_error=error
        )

    def link_or_change_external_credential(
            self, user: User, pending_cookie: Optional[str]) -> Decision:
        """
        Replace the external credential of a signed-in user.

        Raises
        ------
        :class:`.PendingLoginExpired`

        """
        assertion = self.pending_logins.consume(pending_cookie)
        if assertion is None:
            raise PendingLoginExpired('No external login to link')

        credential = assertion.credential
        if not self.auth.try_replace_credential(user, credential):
            # The identity may look like `Name <email>`, which cannot travel
            # in a cookie unencoded.
            message = ('Unable to update the credential for'
                       f' {quote_plus(credential.identity or "")}.')
            return Decision(State.REJECTED,
                            outcome=LinkingOutcome.ALREADY_LINKED,
                            notices={notices.ERROR_MESSAGE: message})

        authenticated = self.auth.authenticate_credential(credential)
        session = self.sessions.create(authenticated)
        password = user.get_password_credential()
        if password is not None:
            self.auth.remove_credential(user, password)
        self.messages.send_credential_changed_notice(
            user, self.auth.describe_credential(credential))

        decision = Decision(State.SESSION_ESTABLISHED, authenticated, session,
                            outcome=LinkingOutcome.SUCCESS)
        provider = self.providers.get(assertion.provider)
        try:
            extract = provider.identity_information if provider \
                else get_identity_information
            email = extract(assertion).email or ''
        except ValueError as e:
            return decision._replace(
                notices={notices.ERROR_MESSAGE: str(e)})

        if email.lower() != (user.email_address or '').lower():
            message = (f'Successfully linked account {email}. Your account'
                       f' email address is still {user.email_address}.')
        else:
            message = f'Successfully linked account {email}.'
        return decision._replace(notices={notices.MESSAGE: message})

    def _associate(self, authenticated: AuthenticatedUser,
                   pending_cookie: Optional[str]) -> AuthenticatedUser:
        user = authenticated.user
        if user.is_organization:
            raise AccountIsOrganization(user.username)
        if user.has_external_credential and not user.is_administrator:
            raise AccountAlreadyLinked(user.email_address or '')

        assertion = self.pending_logins.consume(pending_cookie)
        if assertion is None:
            raise PendingLoginExpired('External login already used')

        self.auth.add_credential(user, assertion.credential)
        password = user.get_password_credential()
        if password is not None:
            self.auth.remove_credential(user, password)
        self.messages.send_credential_added_notice(
            user, self.auth.describe_credential(assertion.credential))
        logger.debug('%s: linked %s to %s', State.LINK_EVALUATED,
                     assertion.provider, user.username)
        return AuthenticatedUser(user, assertion.credential)

    def _complete(self, authenticated: AuthenticatedUser,
                  enforced_providers: Optional[str]) -> Decision:
        provider = should_challenge_enforced_provider(enforced_providers,
                                                      authenticated)
        if provider is not None:
            return Decision(State.CHALLENGED, authenticated,
                            challenge_provider=provider)
        logger.debug('%s: %s', State.POLICY_CHECKED,
                     authenticated.user.username)
        session = self.sessions.create(authenticated)
        return Decision(State.SESSION_ESTABLISHED, authenticated, session,
                        outcome=LinkingOutcome.SUCCESS)
