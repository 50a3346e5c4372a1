"""Controller for the packages page of an account."""

import logging
from http import HTTPStatus as status
from typing import Optional, Tuple

from werkzeug.exceptions import NotFound

from .. import permissions
from ..domain import User
from ..services import current_services
from ..viewmodels import ListPackageItemViewModel

logger = logging.getLogger(__name__)

ResponseData = Tuple[dict, int, dict]


def manage_packages(account_name: str,
                    current_user: Optional[User]) -> ResponseData:
    """
    List the packages owned by an account.

    Parameters
    ----------
    account_name : str
        A user or an organization.
    current_user : :class:`.User`
        Must be able to view the account.

    Returns
    -------
    dict
        ``account`` and ``packages``, as :class:`.ListPackageItemViewModel`.
    int
        Status code. 403 (Forbidden) if the user may not view the account.
    dict
        Headers to add to the response.

    """
    services = current_services()
    account = services.users.find_by_username(account_name)
    if account is None or account.is_deleted:
        raise NotFound('No such account')
    if not permissions.VIEW_ACCOUNT.is_allowed(current_user, account):
        logger.debug('%s may not view packages of %s',
                     current_user.username if current_user else None,
                     account_name)
        return {'account_name': account_name}, status.FORBIDDEN, {}

    packages = [ListPackageItemViewModel(p, current_user)
                for p in services.packages.find_packages_by_owner(account)]
    return {'account': account, 'packages': packages}, status.OK, {}
