"""
Controllers for organization accounts.

Membership and certificate endpoints answer in JSON; the route serializes
``data`` as is. Pages (add, manage, delete, membership request outcome)
are rendered from ``data``.
"""

import logging
from functools import wraps
from http import HTTPStatus as status
from typing import IO, Any, Callable, Dict, Optional, Tuple

from flask import current_app, url_for
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import NotFound

from .. import permissions
from ..domain import Account, Certificate, Organization, User
from ..services import current_services, notices
from ..services.exceptions import EntityException, PermissionDenied
from ..viewmodels import CertificateViewModel, DeleteOrganizationViewModel, \
    ListPackageItemViewModel, OrganizationAccountViewModel, \
    OrganizationMemberViewModel
from .forms import AddOrganizationForm

logger = logging.getLogger(__name__)

ResponseData = Tuple[dict, int, dict]

UNAUTHORIZED = 'Unauthorized'
ORGANIZATION_UNCONFIRMED = ('You must confirm the email address of the'
                            ' organization before managing its members.')
MEMBER_REQUEST_CANCELLED = 'The membership request was cancelled.'
MEMBER_REMOVED = 'The member was removed.'
CERTIFICATE_REQUIRED = 'A certificate file is required.'
CERTIFICATE_REMOVED = 'The certificate was removed.'


def _get_organization(account_name: str) -> Optional[Organization]:
    account = current_services().users.find_by_username(account_name)
    if account is None or not account.is_organization or account.is_deleted:
        return None
    return account  # type: ignore


def _message(message: str, code: int) -> ResponseData:
    return {'message': message}, code, {}


def json_errors(func: Callable[..., ResponseData]) \
        -> Callable[..., ResponseData]:
    """Answer permission and validation failures with a JSON message."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> ResponseData:
        try:
            return func(*args, **kwargs)
        except PermissionDenied as e:
            logger.debug('Permission denied: %s', e)
            return _message(UNAUTHORIZED, status.FORBIDDEN)
        except EntityException as e:
            return _message(str(e), status.BAD_REQUEST)
    return wrapper


def _manageable_organization(account_name: str, current_user: User,
                             require_confirmed: bool = True) -> Organization:
    """
    Get an organization whose memberships the user may manage.

    Raises
    ------
    :class:`.PermissionDenied`
    :class:`.EntityException`
        Raised if the organization must be, and is not, confirmed.

    """
    organization = _get_organization(account_name)
    if organization is None or not permissions.MANAGE_MEMBERSHIP.is_allowed(
            current_user, organization):
        raise PermissionDenied(f'{current_user.username} on {account_name}')
    if require_confirmed and not organization.confirmed:
        raise EntityException(ORGANIZATION_UNCONFIRMED)
    return organization


def add(method: str, form_data: MultiDict, admin_user: User) -> ResponseData:
    """
    Create an organization administered by the current user.

    Returns
    -------
    dict
        Additional data to add to the response.
    int
        Status code. 303 to the manage page if the organization was created.
    dict
        Headers to add to the response.

    """
    if method == 'GET':
        return {'form': AddOrganizationForm()}, status.OK, {}

    form = AddOrganizationForm(form_data)
    data: Dict[str, Any] = {'form': form}
    if not form.validate():
        logger.debug('Add organization form is not valid')
        return data, status.BAD_REQUEST, {}

    services = current_services()
    try:
        organization = services.users.add_organization(
            form.organization_name.data,
            form.organization_email_address.data,
            admin_user
        )
    except EntityException as e:
        logger.debug('Could not add organization: %s', e)
        data['error'] = str(e)
        return data, status.BAD_REQUEST, {}

    logger.info('%s added organization %s', admin_user.username,
                organization.username)
    template: str = current_app.config['CONFIRM_ORGANIZATION_EMAIL_URL']
    services.messages.send_new_account_email(
        organization,
        template.format(username=organization.username,
                        token=organization.email_confirmation_token or '')
    )
    location = url_for('ui.manage_organization', name=organization.username)
    return {}, status.SEE_OTHER, {'Location': location}


def manage_organization(account_name: str,
                        current_user: User) -> ResponseData:
    """Provide the manage page of an organization."""
    organization = _get_organization(account_name)
    if organization is None:
        raise NotFound('No such organization')
    if not permissions.VIEW_ACCOUNT.is_allowed(current_user, organization):
        return {'account_name': account_name}, status.FORBIDDEN, {}
    view_model = OrganizationAccountViewModel.build(organization,
                                                    current_user)
    return {'view_model': view_model}, status.OK, {}


@json_errors
def add_member(account_name: str, member_name: str, is_admin: bool,
               current_user: User) -> ResponseData:
    """
    Invite a user to join an organization.

    The invited user is sent a request to confirm or reject, and the
    organization is told that the request was sent.
    """
    organization = _manageable_organization(account_name, current_user)
    services = current_services()
    request = services.users.add_membership_request(organization,
                                                    member_name, is_admin)

    name = organization.username
    token = request.confirmation_token
    profile_url: str = current_app.config['PROFILE_URL'].format(
        username=current_user.username)
    services.messages.send_organization_membership_request(
        organization, request.new_member, current_user, is_admin,
        profile_url,
        url_for('ui.confirm_member_request', name=name, token=token,
                _external=True),
        url_for('ui.reject_member_request', name=name, token=token,
                _external=True)
    )
    services.messages.send_organization_membership_request_initiated_notice(
        organization, current_user, request.new_member, is_admin,
        url_for('ui.manage_organization', name=name, _external=True)
    )
    logger.debug('%s invited %s to %s', current_user.username, member_name,
                 name)
    member = OrganizationMemberViewModel.from_request(request)
    return member.to_dict(), status.OK, {}


@json_errors
def update_member(account_name: str, member_name: str, is_admin: bool,
                  current_user: User) -> ResponseData:
    """Change the role of a member."""
    organization = _manageable_organization(account_name, current_user)
    services = current_services()
    membership = services.users.update_member(organization, member_name,
                                              is_admin)
    services.messages.send_organization_member_updated_notice(organization,
                                                              membership)
    return OrganizationMemberViewModel.from_membership(membership).to_dict(), \
        status.OK, {}


@json_errors
def cancel_member_request(account_name: str, member_name: str,
                          current_user: User) -> ResponseData:
    """Withdraw a pending invitation."""
    organization = _manageable_organization(account_name, current_user,
                                            require_confirmed=False)
    services = current_services()
    member = services.users.cancel_membership_request(organization,
                                                      member_name)
    services.messages.send_organization_membership_request_cancelled_notice(
        organization, member)
    return _message(MEMBER_REQUEST_CANCELLED, status.OK)


@json_errors
def delete_member(account_name: str, member_name: str,
                  current_user: User) -> ResponseData:
    """Remove a member. Members may always remove themselves."""
    organization = _get_organization(account_name)
    leaving = current_user.username.lower() == member_name.lower()
    if organization is None or not (
            leaving or permissions.MANAGE_MEMBERSHIP.is_allowed(
                current_user, organization)):
        raise PermissionDenied(f'{current_user.username} on {account_name}')
    if not organization.confirmed:
        raise EntityException(ORGANIZATION_UNCONFIRMED)

    services = current_services()
    member = services.users.delete_member(organization, member_name)
    services.messages.send_organization_member_removed_notice(organization,
                                                              member)
    logger.info('%s removed %s from %s', current_user.username, member_name,
                organization.username)
    return _message(MEMBER_REMOVED, status.OK)


def _membership_request_view(organization: Organization, confirm: bool,
                             successful: bool,
                             failure_reason: Optional[str] = None) \
        -> ResponseData:
    data = {
        'organization_name': organization.username,
        'confirm': confirm,
        'successful': successful,
        'failure_reason': failure_reason,
    }
    code = status.OK if successful else status.BAD_REQUEST
    return data, code, {}


def confirm_member_request(account_name: str, confirmation_token: str,
                           current_user: User) -> ResponseData:
    """Accept an invitation to join an organization."""
    organization = _get_organization(account_name)
    if organization is None:
        raise NotFound('No such organization')

    services = current_services()
    try:
        membership = services.users.add_member(
            organization, current_user.username, confirmation_token)
    except EntityException as e:
        logger.debug('Could not confirm membership: %s', e)
        return _membership_request_view(organization, True, False, str(e))

    services.messages.send_organization_member_updated_notice(organization,
                                                              membership)
    location = url_for('ui.manage_organization', name=organization.username)
    data = {'notices': {notices.MESSAGE:
                        f'You are now a member of {organization.username}.'}}
    return data, status.SEE_OTHER, {'Location': location}


def reject_member_request(account_name: str, confirmation_token: str,
                          current_user: User) -> ResponseData:
    """Decline an invitation to join an organization."""
    organization = _get_organization(account_name)
    if organization is None:
        raise NotFound('No such organization')

    services = current_services()
    try:
        services.users.reject_membership_request(
            organization, current_user.username, confirmation_token)
    except EntityException as e:
        logger.debug('Could not reject membership: %s', e)
        return _membership_request_view(organization, False, False, str(e))

    services.messages.send_organization_membership_request_rejected_notice(
        organization, current_user)
    return _membership_request_view(organization, False, True)


def _get_certificate_account(account_name: str,
                             current_user: Optional[User]) \
        -> Tuple[Optional[Account], Optional[ResponseData]]:
    if current_user is None or not current_user.confirmed \
            or current_user.is_deleted:
        return None, _message(UNAUTHORIZED, status.UNAUTHORIZED)
    account = current_services().users.find_by_username(account_name)
    if account is None:
        return None, _message('Account not found.', status.NOT_FOUND)
    if account.is_deleted:
        return None, _message(UNAUTHORIZED, status.UNAUTHORIZED)
    return account, None


def _certificate_view(certificate: Certificate, account: Account,
                      can_manage: bool) -> Dict[str, Any]:
    delete_url = None
    if can_manage:
        delete_url = url_for('ui.get_or_remove_certificate',
                             name=account.username,
                             thumbprint=certificate.thumbprint)
    return CertificateViewModel(certificate, can_manage,
                                delete_url).to_dict()


@json_errors
def add_or_get_certificates(method: str, account_name: str,
                            current_user: Optional[User],
                            upload: Optional[IO[bytes]] = None) \
        -> ResponseData:
    """
    List the certificates of an account, or register a new one.

    Returns
    -------
    dict
        ``certificates`` for a listing, the new certificate otherwise.
    int
        Status code. 201 (Created) for a new certificate.
    dict
        Headers to add to the response.

    """
    account, failure = _get_certificate_account(account_name, current_user)
    if failure is not None:
        return failure
    can_manage = permissions.MANAGE_CERTIFICATE.is_allowed(current_user,
                                                           account)
    services = current_services()

    if method == 'GET':
        certificates = services.certificates.get_certificates(account)
        data = {'certificates': [
            _certificate_view(c, account, can_manage) for c in certificates
        ]}
        return data, status.OK, {}

    if not can_manage:
        raise PermissionDenied(f'{current_user.username} on {account_name}')
    if upload is None:
        return _message(CERTIFICATE_REQUIRED, status.BAD_REQUEST)
    try:
        certificate = services.certificates.add_certificate(upload)
        services.certificates.activate_certificate(certificate.thumbprint,
                                                   account)
    except ValueError as e:
        logger.debug('Could not add certificate: %s', e)
        return _message(str(e), status.BAD_REQUEST)

    logger.info('Certificate %s registered to %s', certificate.thumbprint,
                account.username)
    data = _certificate_view(certificate, account, can_manage)
    return data, status.CREATED, {'Location': data['DeleteUrl']}


@json_errors
def get_or_remove_certificate(method: str, account_name: str,
                              thumbprint: str,
                              current_user: Optional[User]) -> ResponseData:
    """Show one certificate of an account, or unregister it."""
    account, failure = _get_certificate_account(account_name, current_user)
    if failure is not None:
        return failure
    can_manage = permissions.MANAGE_CERTIFICATE.is_allowed(current_user,
                                                           account)
    services = current_services()

    if method == 'GET':
        certificate = next(
            (c for c in services.certificates.get_certificates(account)
             if c.thumbprint.lower() == thumbprint.lower()), None)
        if certificate is None:
            return _message('Certificate not found.', status.NOT_FOUND)
        return _certificate_view(certificate, account, can_manage), \
            status.OK, {}

    if not can_manage:
        raise PermissionDenied(f'{current_user.username} on {account_name}')
    services.certificates.deactivate_certificate(thumbprint, account)
    logger.info('Certificate %s removed from %s', thumbprint,
                account.username)
    return _message(CERTIFICATE_REMOVED, status.OK)


def delete_organization_view(account_name: str,
                             current_user: User) -> ResponseData:
    """Provide the page for deleting an organization."""
    organization = _get_organization(account_name)
    if organization is None:
        raise NotFound('No such organization')
    if not permissions.MANAGE_ACCOUNT.is_allowed(current_user, organization):
        return {'account_name': account_name}, status.FORBIDDEN, {}

    packages = current_services().packages.find_packages_by_owner(
        organization, include_unlisted=False)
    view_model = DeleteOrganizationViewModel(
        organization, account_name,
        [ListPackageItemViewModel(p, current_user) for p in packages]
    )
    return {'view_model': view_model}, status.OK, {}
