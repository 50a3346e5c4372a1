"""
Controllers for signing in, registering and linking external accounts.

A user can sign in with a password, or with an external provider. After a
provider handshake, the external identity is held in the pending login store
and the user either lands in the account linked to it, or is asked to link it
to an existing account or to register a new one. The decisions themselves are
made by :class:`gallery.linking.LinkingEngine`; this module maps them onto
responses.

Controllers return ``(data, status, headers)``. Cookies to set go under
``data['cookies']`` and notices for the next page under ``data['notices']``.
"""

import logging
from http import HTTPStatus as status
from typing import Any, Dict, Mapping, Optional, Tuple

from flask import current_app, url_for
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import InternalServerError, NotFound

from ..domain import User
from ..identity import extract_email, is_valid_email, mask_email
from ..linking import Decision, LinkingEngine, State, lock_message
from ..next_page import good_next_page
from ..services import current_services, notices
from ..services.exceptions import AccountAlreadyLinked, AuthenticationFailed, \
    AccountIsOrganization, AccountLocked, BadCredentials, EntityException, \
    InvalidToken, PendingLoginExpired, SessionCreationFailed, \
    SessionDeletionFailed, UnknownSession
from ..services.pending_logins import current_pending_logins
from ..services.providers import UnknownProvider, current_providers
from ..services.sessions import current_session
from ..viewmodels import AuthenticationProviderViewModel
from .forms import ExternalRegistrationForm, LoginForm, RegistrationForm

logger = logging.getLogger(__name__)

ResponseData = Tuple[dict, int, dict]

SIGN_IN = 'sign_in'
SIGN_IN_GALLERY_ACCOUNT = 'sign_in_gallery_account'
REGISTER = 'register'
LINK_EXTERNAL = 'link_external'

LINK = 'link'
CHANGE = 'change'
"""Where to continue after the provider handshake."""

ALREADY_LOGGED_IN = 'You are already logged in!'
EXTERNAL_LINK_EXPIRED = ('Your external login session has expired.'
                         ' Please sign in again.')
BAD_CREDENTIALS = 'The username/email and password combination was wrong.'
ACCOUNT_IS_ORGANIZATION = ('Organization accounts cannot be signed into or'
                           ' linked to an external account.')
REGISTERED = 'Your account is now registered!'
CHANGE_CREDENTIAL_NOT_ALLOWED = ('Your account is signed in with Azure Active'
                                 ' Directory and its credential cannot be'
                                 ' changed.')
NO_EXTERNAL_PROVIDER = 'Could not find an external provider to link.'


def _engine() -> LinkingEngine:
    services = current_services()
    return LinkingEngine(services.auth, services.users, services.messages,
                         current_session(), current_pending_logins(),
                         current_providers())


def _enforced_providers() -> str:
    enforced: str = current_app.config.get('ENFORCED_AUTH_PROVIDER_FOR_ADMIN',
                                           '')
    return enforced


def _view(view: str, return_url: Optional[str], linking: bool = False,
          **extra: Any) -> Dict[str, Any]:
    providers = [AuthenticationProviderViewModel(p.name, p.account_noun)
                 for p in current_providers().login_providers()]
    data: Dict[str, Any] = {
        'view': view,
        'return_url': return_url,
        'linking': linking,
        'providers': providers,
        'sign_in': LoginForm(),
        'register': ExternalRegistrationForm() if linking
        else RegistrationForm(),
        'external': None,
        'errors': {},
    }
    data.update(extra)
    return data


def _redirect(location: str, data: Optional[dict] = None,
              code: int = status.SEE_OTHER) -> ResponseData:
    return data if data is not None else {}, code, {'Location': location}


def _already_logged_in(return_url: Optional[str]) -> ResponseData:
    return _redirect(good_next_page(return_url),
                     {'notices': {notices.MESSAGE: ALREADY_LOGGED_IN}})


def _external_return_url(provider: str, action: str,
                         return_url: Optional[str]) -> str:
    return url_for('ui.external_login_return', provider=provider,
                   action=action, returnUrl=return_url, _external=True)


def _session_cookies(decision: Decision) -> Dict[str, Tuple[str, int]]:
    """Cookies for an established session; the pending login is cleared."""
    sessions = current_session()
    session = decision.session
    return {
        'auth_session_cookie': (sessions.generate_cookie(session),
                                session.expires),
        'pending_login_cookie': ('', 0)
    }


def _finish(decision: Decision, return_url: Optional[str],
            location: Optional[str] = None,
            extra_notices: Optional[Dict[str, str]] = None) -> ResponseData:
    """Map a sign-in decision to a challenge or to a signed-in redirect."""
    if decision.state is State.CHALLENGED:
        return challenge(decision.challenge_provider, return_url)

    data: Dict[str, Any] = {'cookies': _session_cookies(decision)}
    user_notices = dict(decision.notices or {})
    user_notices.update(extra_notices or {})
    if user_notices:
        data['notices'] = user_notices
    logger.debug('Signed in %s, session %s',
                 decision.authenticated.user.username,
                 decision.session.session_id)
    return _redirect(location or good_next_page(return_url), data)


def external_link_expired() -> ResponseData:
    """Send the user back to sign in after the pending login is gone."""
    logger.debug('External login expired')
    data = {
        'notices': {notices.ERROR_MESSAGE: EXTERNAL_LINK_EXPIRED},
        'cookies': {'pending_login_cookie': ('', 0)}
    }
    return _redirect(url_for('ui.log_on'), data)


def log_on(return_url: Optional[str], authenticated: bool) -> ResponseData:
    """
    Provide the sign-in page offering the external providers.

    Parameters
    ----------
    return_url : str
        Page to which the user should be redirected upon sign in.
    authenticated : bool
        Whether the request already carries a valid session.

    Returns
    -------
    dict
        Additional data to add to the response.
    int
        Status code. 200 for the page, 303 if already signed in.
    dict
        Headers to add to the response.

    """
    if authenticated:
        return _already_logged_in(return_url)
    return _view(SIGN_IN, return_url), status.OK, {}


def log_on_gallery_account(return_url: Optional[str],
                           authenticated: bool) -> ResponseData:
    """Provide the password sign-in page."""
    if authenticated:
        return _already_logged_in(return_url)
    return _view(SIGN_IN_GALLERY_ACCOUNT, return_url), status.OK, {}


def sign_up(return_url: Optional[str], authenticated: bool) -> ResponseData:
    """Provide the registration page."""
    if authenticated:
        return _already_logged_in(return_url)
    return _view(REGISTER, return_url), status.OK, {}


def sign_in(form_data: MultiDict, return_url: Optional[str], linking: bool,
            pending_cookie: Optional[str],
            authenticated: bool) -> ResponseData:
    """
    Sign in with a username (or email) and password.

    When ``linking``, the external identity waiting in the pending login is
    linked to the account.

    Parameters
    ----------
    form_data : MultiDict
        Should include ``username_or_email`` and ``password``.
    return_url : str
        Page to which the user should be redirected upon sign in.
    linking : bool
        Whether to link the pending external identity.
    pending_cookie : str or None
        The pending login cookie, if any.
    authenticated : bool
        Whether the request already carries a valid session.

    Returns
    -------
    dict
        Additional data to add to the response.
    int
        Status code. This should be 303 (See Other) if all goes well.
    dict
        Headers to add to the response.

    """
    if authenticated:
        return _already_logged_in(return_url)

    form = LoginForm(form_data)
    view = LINK_EXTERNAL if linking else SIGN_IN_GALLERY_ACCOUNT
    if not form.validate():
        logger.debug('Sign in form is not valid')
        data = _view(view, return_url, linking, sign_in=form)
        return data, status.BAD_REQUEST, {}

    try:
        decision = _engine().authenticate(form.username_or_email.data,
                                          form.password.data, linking,
                                          pending_cookie,
                                          _enforced_providers())
    except PendingLoginExpired:
        return external_link_expired()
    except SessionCreationFailed as e:
        logger.info('Could not create session: %s', e)
        raise InternalServerError('Cannot log in') from e
    except (BadCredentials, AccountLocked, AccountAlreadyLinked,
            AccountIsOrganization) as e:
        logger.debug('Sign in failed for %s: %s',
                     form.username_or_email.data, e)
        data = _view(view, return_url, linking, sign_in=form,
                     errors={SIGN_IN: _sign_in_error(e)})
        if linking:
            data['external'] = _association(pending_cookie)
        return data, status.BAD_REQUEST, {}
    return _finish(decision, return_url)


def _sign_in_error(e: Exception) -> str:
    if isinstance(e, AccountLocked):
        return lock_message(e.minutes)
    if isinstance(e, AccountAlreadyLinked):
        return (f'The account with the email {e.email_address} is already'
                ' linked to another external account.')
    if isinstance(e, AccountIsOrganization):
        return ACCOUNT_IS_ORGANIZATION
    return BAD_CREDENTIALS


def _association(pending_cookie: Optional[str]) -> Any:
    """Describe the pending identity again, to re-render the link page."""
    return _engine().describe_external_account(pending_cookie)


def register(form_data: MultiDict, return_url: Optional[str], linking: bool,
             pending_cookie: Optional[str],
             authenticated: bool) -> ResponseData:
    """
    Create a new account and sign in to it.

    When ``linking``, the account is created with the pending external
    identity as its only credential, and no password is required.

    Returns
    -------
    dict
        Additional data to add to the response.
    int
        Status code. This should be 303 (See Other) if all goes well.
    dict
        Headers to add to the response.

    """
    if authenticated:
        return _already_logged_in(return_url)

    form_class = ExternalRegistrationForm if linking else RegistrationForm
    form = form_class(form_data)
    view = LINK_EXTERNAL if linking else REGISTER
    if not form.validate():
        logger.debug('Registration form is not valid')
        data = _view(view, return_url, linking, register=form)
        return data, status.BAD_REQUEST, {}

    config = current_app.config
    try:
        decision = _engine().register(
            form.username.data, form.email_address.data,
            password=form.password.data, linking=linking,
            pending_cookie=pending_cookie,
            enforced_providers=_enforced_providers(),
            confirm_email_addresses=config['CONFIRM_EMAIL_ADDRESSES'],
            confirmation_url=_confirmation_url
        )
    except PendingLoginExpired:
        return external_link_expired()
    except SessionCreationFailed as e:
        logger.info('Could not create session: %s', e)
        raise InternalServerError('Cannot log in') from e
    except EntityException as e:
        logger.debug('Registration failed: %s', e)
        data = _view(view, return_url, linking, register=form,
                     errors={REGISTER: str(e)})
        if linking:
            data['external'] = _association(pending_cookie)
        return data, status.BAD_REQUEST, {}

    if decision.state is State.CHALLENGED:
        return _finish(decision, return_url)
    if not return_url or return_url == config['HOME_URL']:
        return _finish(decision, return_url, location=url_for('ui.thanks'))
    return _finish(decision, return_url,
                   extra_notices={notices.MESSAGE: REGISTERED})


def _confirmation_url(user: User) -> str:
    template: str = current_app.config['CONFIRM_EMAIL_URL']
    return template.format(username=user.username,
                           token=user.email_confirmation_token or '')


def log_off(session_cookie: Optional[str],
            return_url: Optional[str]) -> ResponseData:
    """
    Sign out, and redirect.

    Return URLs pointing into account pages are dropped, since those pages
    need a session.

    Returns
    -------
    dict
        Additional data to add to the response.
    int
        Status code. This should be 303 (See Other).
    dict
        Headers to add to the response.

    """
    logger.debug('Request to log off')
    if session_cookie:
        try:
            current_session().delete(session_cookie)
        except SessionDeletionFailed as e:
            logger.debug('Log off failed: %s', e)
        except (InvalidToken, UnknownSession) as e:
            logger.debug('Unknown session: %s', e)

    if return_url and 'account' in return_url.lower():
        return_url = None
    location = current_app.config['DEFAULT_LOGOUT_REDIRECT_URL']
    if return_url:
        location = good_next_page(return_url)
    data = {'cookies': {'auth_session_cookie': ('', 0)}}
    return _redirect(location, data)


def signin_assistance(username: Optional[str],
                      provided_email_address: Optional[str]) -> ResponseData:
    """
    Help a user find which external account they sign in with.

    Without ``provided_email_address``, respond with the masked address of
    the linked external account. With it, and if it matches that account,
    send a reminder email to it.

    Returns
    -------
    dict
        ``success`` and either ``EmailAddress`` or ``message``.
    int
        Status code. Failures are reported in the body with 200.
    dict
        Headers to add to the response.

    """
    try:
        if not username:
            raise ValueError('A username is required.')
        user = current_services().users.find_by_username(username)
        if user is None:
            raise ValueError('User not found.')
        external = next((c for c in user.credentials if c.is_external), None)
        if external is None:
            raise ValueError('No external account is linked to the user'
                             f' "{username}".')

        email = extract_email(external.identity)
        if not email or not is_valid_email(email):
            raise ValueError('The email address associated with the external'
                             ' account is not valid. Please contact'
                             ' support.')

        if not (provided_email_address or '').strip():
            return {'success': True,
                    'EmailAddress': mask_email(email)}, status.OK, {}

        if not is_valid_email(provided_email_address):
            raise ValueError('The email address provided is not valid.')
        if provided_email_address.lower() != email.lower():
            raise ValueError('The email address provided does not match the'
                             ' email address of the linked account.')
        current_services().messages.send_signin_assistance_email(
            email, user.username)
        return {'success': True}, status.OK, {}
    except ValueError as e:
        logger.debug('Sign in assistance failed for %s: %s', username, e)
        return {'success': False, 'message': str(e)}, status.OK, {}


def challenge(provider: Optional[str], return_url: Optional[str],
              action: str = LINK) -> ResponseData:
    """
    Redirect to an external provider.

    Raises
    ------
    :class:`.NotFound`
        Raised if the provider is unknown or disabled.

    """
    try:
        location = current_providers().challenge(
            provider or '', _external_return_url(provider or '', action,
                                                 return_url))
    except UnknownProvider as e:
        logger.debug('No such provider: %s', provider)
        raise NotFound('No such authentication provider') from e
    return _redirect(location)


def authenticate_external(user: User,
                          return_url: Optional[str]) -> ResponseData:
    """
    Start replacing the external credential of a signed-in user.

    Users signed in with Azure Active Directory cannot change it.
    """
    location = good_next_page(return_url)
    if user.get_azure_active_directory_credential() is not None:
        return _redirect(location, {'notices': {
            notices.WARNING_MESSAGE: CHANGE_CREDENTIAL_NOT_ALLOWED}})
    provider = current_providers().external_provider()
    if provider is None:
        logger.warning('No enabled provider to link external credentials')
        return _redirect(location, {'notices': {
            notices.ERROR_MESSAGE: NO_EXTERNAL_PROVIDER}})
    return challenge(provider, return_url, CHANGE)


def external_login_return(provider: str, params: Mapping[str, str],
                          action: Optional[str],
                          return_url: Optional[str]) -> ResponseData:
    """
    Complete the provider handshake and hold the external identity.

    The identity waits in the pending login store until the user links it,
    registers with it, or signs in with it.
    """
    try:
        assertion = current_services().auth.read_external_login(provider,
                                                                params)
    except AuthenticationFailed as e:
        logger.info('External login with %s failed: %s', provider, e)
        return external_link_expired()

    pending_logins = current_pending_logins()
    cookie = pending_logins.create(assertion)
    duration = int(current_app.config['PENDING_LOGIN_DURATION'])
    if action == CHANGE:
        location = url_for('ui.link_or_change_external_credential',
                           returnUrl=return_url)
    else:
        location = url_for('ui.link_external_account', returnUrl=return_url)
    data = {'cookies': {'pending_login_cookie': (cookie, duration)}}
    return _redirect(location, data)


def link_external_account(pending_cookie: Optional[str],
                          return_url: Optional[str]) -> ResponseData:
    """
    Sign in with the pending external identity, or offer to link it.

    Returns
    -------
    dict
        Additional data to add to the response.
    int
        Status code. 303 when signed in, 200 for the link page.
    dict
        Headers to add to the response.

    """
    try:
        decision = _engine().link_external_account(pending_cookie,
                                                   _enforced_providers())
    except PendingLoginExpired:
        return external_link_expired()
    except SessionCreationFailed as e:
        logger.info('Could not create session: %s', e)
        raise InternalServerError('Cannot log in') from e

    if decision.state is not State.UNLINKED:
        return _finish(decision, return_url)

    association = decision.association
    sign_in_form = LoginForm(data={
        'username_or_email': association.email_address})
    register_form = ExternalRegistrationForm(data={
        'email_address': association.email_address})
    data = _view(LINK_EXTERNAL, return_url, linking=True,
                 sign_in=sign_in_form, register=register_form,
                 external=association)
    return data, status.OK, {}


def link_or_change_external_credential(user: User,
                                       pending_cookie: Optional[str],
                                       return_url: Optional[str]) \
        -> ResponseData:
    """Replace the external credential of a signed-in user."""
    try:
        decision = _engine().link_or_change_external_credential(
            user, pending_cookie)
    except PendingLoginExpired:
        return external_link_expired()
    except SessionCreationFailed as e:
        logger.info('Could not create session: %s', e)
        raise InternalServerError('Cannot log in') from e

    if decision.state is State.REJECTED:
        data = {'notices': dict(decision.notices or {}),
                'cookies': {'pending_login_cookie': ('', 0)}}
        return _redirect(good_next_page(return_url), data)
    return _finish(decision, return_url)
