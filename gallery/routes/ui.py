"""Provides Flask integration for the external user interface."""

import logging
from datetime import timedelta
from functools import wraps
from http import HTTPStatus as status
from typing import Any, Callable, Optional

from flask import Blueprint, Response, current_app, g, jsonify, \
    make_response, redirect, render_template, request, url_for

from ..controllers import authentication, organizations, packages
from ..domain import User
from ..next_page import good_next_page
from ..services import current_services
from ..services.exceptions import InvalidToken, UnknownSession
from ..services.notices import current_notices
from ..services.sessions import current_session

logger = logging.getLogger(__name__)
blueprint = Blueprint('ui', __name__, url_prefix='')

TRUE_VALUES = ('true', '1', 'on', 'yes')


def _flag(value: Optional[str]) -> bool:
    return bool(value) and value.lower() in TRUE_VALUES  # type: ignore


def _return_url() -> Optional[str]:
    return request.args.get('returnUrl', request.form.get('returnUrl'))


def _cookie(config_key: str) -> Optional[str]:
    return request.cookies.get(current_app.config[config_key])


@blueprint.before_request
def load_current_user() -> None:
    """Resolve the session cookie to the signed-in user, if any."""
    g.current_user = None
    cookie = _cookie('AUTH_SESSION_COOKIE_NAME')
    if not cookie:
        return
    try:
        session = current_session().load(cookie)
    except (InvalidToken, UnknownSession) as e:
        logger.debug('Ignoring session cookie: %s', e)
        return
    account = current_services().users.find_by_username(session.username)
    if account is not None and not account.is_organization \
            and not account.is_deleted:
        g.current_user = account


def current_user() -> Optional[User]:
    """The signed-in user of this request."""
    user: Optional[User] = g.get('current_user')
    return user


def anonymous_only(func: Callable) -> Callable:
    """Redirect signed-in users to where they were going."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        if current_user() is not None:
            next_page = good_next_page(_return_url())
            return make_response(redirect(next_page, code=status.SEE_OTHER))
        return func(*args, **kwargs)
    return wrapper


def ui_authorize(func: Callable) -> Callable:
    """Send anonymous users to sign in, then back here."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        if current_user() is None:
            location = url_for('ui.log_on', returnUrl=request.full_path)
            return make_response(redirect(location, code=status.SEE_OTHER))
        return func(*args, **kwargs)
    return wrapper


def set_cookies(response: Response, data: dict) -> None:
    """
    Update a :class:`.Response` with cookies in controller data.

    Contollers seeking to update cookies must include a 'cookies' key
    in their response data.
    """
    cookies = data.pop('cookies', None)
    if cookies is None:
        return None
    for cookie_key, (cookie_value, expires) in cookies.items():
        cookie_name = current_app.config[f'{cookie_key.upper()}_NAME']
        max_age = timedelta(seconds=expires)
        logger.debug('Set cookie %s, max_age %s', cookie_name, max_age)
        domain = current_app.config['AUTH_SESSION_COOKIE_DOMAIN']
        params = dict(httponly=True, domain=domain)
        if current_app.config['AUTH_SESSION_COOKIE_SECURE']:
            # Setting samesite to lax, to allow reasonable links to
            # authenticated views using GET requests.
            params.update({'secure': True, 'samesite': 'lax'})
        response.set_cookie(cookie_name, cookie_value, max_age=max_age,
                            **params)


def set_notices(data: dict) -> None:
    """Keep controller notices for the next page, via the notice cookie."""
    notices = data.pop('notices', None)
    if not notices:
        return
    notice_id = current_notices().put(notices)
    data.setdefault('cookies', {})['notice_cookie'] = \
        (notice_id, int(current_app.config['NOTICE_DURATION']))


def pop_notices(data: dict) -> dict:
    """Notices left for this page; the notice cookie is cleared."""
    notices = current_notices().pop(_cookie('NOTICE_COOKIE_NAME'))
    if notices:
        data.setdefault('cookies', {})['notice_cookie'] = ('', 0)
    return notices


def respond(data: dict, code: int, headers: dict,
            template: Optional[str] = None) -> Response:
    """
    Turn controller output into a redirect, a page, or a JSON payload.

    Flask puts cookie-setting methods on the response, so cookies and notices
    are applied here instead of in the controllers.
    """
    set_notices(data)
    if 'Location' in headers and 300 <= code < 400:
        response = make_response(redirect(headers['Location'], code=code))
    elif template is None:
        payload = {k: v for k, v in data.items() if k != 'cookies'}
        response = make_response(jsonify(payload), code, headers)
    else:
        notices = pop_notices(data)
        context = {k: v for k, v in data.items() if k != 'cookies'}
        content = render_template(template, notices=notices,
                                  current_user=current_user(), **context)
        response = make_response(content, code, headers)
    set_cookies(response, data)
    return response


def _authentication_page(data: dict, code: int, headers: dict) -> Response:
    template = f"gallery/{data.get('view', 'sign_in')}.html"
    return respond(data, code, headers, template)


@blueprint.after_request
def apply_response_headers(response: Response) -> Response:
    """Prevent UI redress attacks."""
    response.headers['Content-Security-Policy'] = "frame-ancestors 'none'"
    response.headers['X-Frame-Options'] = 'DENY'
    return response


@blueprint.route('/users/account/LogOn', methods=['GET'])
def log_on() -> Response:
    """Sign-in page offering the external providers."""
    data, code, headers = authentication.log_on(
        _return_url(), current_user() is not None)
    return _authentication_page(data, code, headers)


@blueprint.route('/users/account/LogOnNuGetAccount', methods=['GET'])
def log_on_gallery_account() -> Response:
    """Sign-in page for username and password."""
    data, code, headers = authentication.log_on_gallery_account(
        _return_url(), current_user() is not None)
    return _authentication_page(data, code, headers)


@blueprint.route('/users/account/SignUp', methods=['GET'])
def sign_up() -> Response:
    """Registration page."""
    data, code, headers = authentication.sign_up(
        _return_url(), current_user() is not None)
    return _authentication_page(data, code, headers)


@blueprint.route('/users/account/SignIn', methods=['POST'])
def sign_in() -> Response:
    """Sign in with a password, linking the pending external identity."""
    data, code, headers = authentication.sign_in(
        request.form, _return_url(), _flag(request.form.get('linkingAccount')),
        _cookie('PENDING_LOGIN_COOKIE_NAME'), current_user() is not None)
    return _authentication_page(data, code, headers)


@blueprint.route('/users/account/Register', methods=['POST'])
def register() -> Response:
    """Interface for creating new accounts."""
    data, code, headers = authentication.register(
        request.form, _return_url(), _flag(request.form.get('linkingAccount')),
        _cookie('PENDING_LOGIN_COOKIE_NAME'), current_user() is not None)
    return _authentication_page(data, code, headers)


@blueprint.route('/users/Thanks', methods=['GET'])
@ui_authorize
def thanks() -> Response:
    """Landing page after registering."""
    return respond({}, status.OK, {}, 'gallery/thanks.html')


@blueprint.route('/users/account/LogOff', methods=['GET', 'POST'])
def log_off() -> Response:
    """Sign out."""
    data, code, headers = authentication.log_off(
        _cookie('AUTH_SESSION_COOKIE_NAME'), _return_url())
    return respond(data, code, headers)


@blueprint.route('/users/account/SigninAssistance', methods=['POST'])
@anonymous_only
def signin_assistance() -> Response:
    """Help a user find the external account they sign in with."""
    data, code, headers = authentication.signin_assistance(
        request.form.get('username'),
        request.form.get('providedEmailAddress'))
    return respond(data, code, headers)


@blueprint.route('/users/account/authenticate/<provider>', methods=['GET'])
def challenge(provider: str) -> Response:
    """Redirect to an external provider."""
    data, code, headers = authentication.challenge(provider, _return_url())
    return respond(data, code, headers)


@blueprint.route('/users/account/authenticate/return/<provider>',
                 methods=['GET', 'POST'])
def external_login_return(provider: str) -> Response:
    """The external provider sends the user back here."""
    params = request.args.to_dict()
    params.update(request.form.to_dict())
    data, code, headers = authentication.external_login_return(
        provider, params, request.args.get('action'), _return_url())
    return respond(data, code, headers)


@blueprint.route('/users/account/LinkExternalAccount', methods=['GET'])
def link_external_account() -> Response:
    """Sign in with, or offer to link, the pending external identity."""
    data, code, headers = authentication.link_external_account(
        _cookie('PENDING_LOGIN_COOKIE_NAME'), _return_url())
    return _authentication_page(data, code, headers)


@blueprint.route('/users/account/AuthenticateExternal', methods=['GET'])
@ui_authorize
def authenticate_external() -> Response:
    """Start replacing the external credential of the current user."""
    data, code, headers = authentication.authenticate_external(
        current_user(), _return_url())
    return respond(data, code, headers)


@blueprint.route('/users/account/LinkOrChangeExternalCredential',
                 methods=['GET'])
@ui_authorize
def link_or_change_external_credential() -> Response:
    """Replace the external credential of the current user."""
    data, code, headers = authentication.link_or_change_external_credential(
        current_user(), _cookie('PENDING_LOGIN_COOKIE_NAME'), _return_url())
    return respond(data, code, headers)


@blueprint.route('/organization/add', methods=['GET', 'POST'])
@ui_authorize
def add_organization() -> Response:
    """Create an organization."""
    data, code, headers = organizations.add(request.method, request.form,
                                            current_user())
    return respond(data, code, headers, 'gallery/add_organization.html')


@blueprint.route('/organization/<name>/Manage', methods=['GET'])
@ui_authorize
def manage_organization(name: str) -> Response:
    """Manage an organization."""
    data, code, headers = organizations.manage_organization(name,
                                                            current_user())
    return respond(data, code, headers, 'gallery/manage_organization.html')


@blueprint.route('/organization/<name>/members/add', methods=['POST'])
@ui_authorize
def add_member(name: str) -> Response:
    """Invite a member."""
    data, code, headers = organizations.add_member(
        name, request.form.get('memberName', ''),
        _flag(request.form.get('isAdmin')), current_user())
    return respond(data, code, headers)


@blueprint.route('/organization/<name>/members/update', methods=['POST'])
@ui_authorize
def update_member(name: str) -> Response:
    """Change the role of a member."""
    data, code, headers = organizations.update_member(
        name, request.form.get('memberName', ''),
        _flag(request.form.get('isAdmin')), current_user())
    return respond(data, code, headers)


@blueprint.route('/organization/<name>/members/cancel', methods=['POST'])
@ui_authorize
def cancel_member_request(name: str) -> Response:
    """Withdraw an invitation."""
    data, code, headers = organizations.cancel_member_request(
        name, request.form.get('memberName', ''), current_user())
    return respond(data, code, headers)


@blueprint.route('/organization/<name>/members/delete', methods=['POST'])
@ui_authorize
def delete_member(name: str) -> Response:
    """Remove a member."""
    data, code, headers = organizations.delete_member(
        name, request.form.get('memberName', ''), current_user())
    return respond(data, code, headers)


@blueprint.route('/organization/<name>/Members/Confirm/<token>',
                 methods=['GET'])
@ui_authorize
def confirm_member_request(name: str, token: str) -> Response:
    """Accept an invitation."""
    data, code, headers = organizations.confirm_member_request(
        name, token, current_user())
    return respond(data, code, headers,
                   'gallery/handle_membership_request.html')


@blueprint.route('/organization/<name>/Members/Reject/<token>',
                 methods=['GET'])
@ui_authorize
def reject_member_request(name: str, token: str) -> Response:
    """Decline an invitation."""
    data, code, headers = organizations.reject_member_request(
        name, token, current_user())
    return respond(data, code, headers,
                   'gallery/handle_membership_request.html')


@blueprint.route('/organization/<name>/certificates',
                 methods=['GET', 'POST'])
@ui_authorize
def add_or_get_certificates(name: str) -> Response:
    """List or register certificates."""
    upload = request.files.get('uploadFile')
    data, code, headers = organizations.add_or_get_certificates(
        request.method, name, current_user(),
        upload.stream if upload else None)
    return respond(data, code, headers)


@blueprint.route('/organization/<name>/certificates/<thumbprint>',
                 methods=['GET', 'DELETE'])
@ui_authorize
def get_or_remove_certificate(name: str, thumbprint: str) -> Response:
    """Show or unregister a certificate."""
    data, code, headers = organizations.get_or_remove_certificate(
        request.method, name, thumbprint, current_user())
    return respond(data, code, headers)


@blueprint.route('/organization/<name>/Delete', methods=['GET'])
@ui_authorize
def delete_organization(name: str) -> Response:
    """Page for deleting an organization."""
    data, code, headers = organizations.delete_organization_view(
        name, current_user())
    return respond(data, code, headers, 'gallery/delete_organization.html')


@blueprint.route('/account/<name>/Packages', methods=['GET'])
@ui_authorize
def manage_packages(name: str) -> Response:
    """Packages owned by an account."""
    data, code, headers = packages.manage_packages(name, current_user())
    return respond(data, code, headers, 'gallery/manage_packages.html')


@blueprint.route('/auth_status', methods=['GET'])
def auth_status() -> Response:
    """Get if the app is running."""
    return make_response("OK")
