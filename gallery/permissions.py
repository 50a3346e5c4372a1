"""
Permission checks for actions on accounts and packages.

An action names the relationship the current user must have with the account
it acts on behalf of (e.g. be its owner, or an admin of the organization),
and, for package actions, the relationship that account must have with the
package's owners.
"""

from enum import Enum, Flag
from typing import Iterable, List, NamedTuple, Optional

from .domain import Account, Package


class PermissionsRequirement(Flag):
    """Relationships that may satisfy a permission check."""

    NONE = 0
    OWNER = 1
    """The acting user is the account itself."""
    ORGANIZATION_ADMIN = 2
    """The account is an organization and the user is an admin member."""
    ORGANIZATION_COLLABORATOR = 4
    """The account is an organization and the user is a non-admin member."""
    SITE_ADMIN = 8
    """The user is a site administrator."""


OWNER_OR_ORGANIZATION_ADMIN = \
    PermissionsRequirement.OWNER | PermissionsRequirement.ORGANIZATION_ADMIN
OWNER_OR_ORGANIZATION_MEMBER = \
    OWNER_OR_ORGANIZATION_ADMIN | \
    PermissionsRequirement.ORGANIZATION_COLLABORATOR


class PermissionsCheckResult(Enum):
    """Outcome of a permission check."""

    ALLOWED = 'allowed'
    ACCOUNT_FAILURE = 'account_failure'
    PACKAGE_REGISTRATION_FAILURE = 'package_registration_failure'


def is_requirement_satisfied(requirement: PermissionsRequirement,
                             current: Optional[Account],
                             account: Optional[Account]) -> bool:
    """Whether ``current`` relates to ``account`` as ``requirement`` asks."""
    if current is None or account is None:
        return False
    if PermissionsRequirement.OWNER in requirement \
            and current.username.lower() == account.username.lower():
        return True
    if account.is_organization:
        membership = account.get_membership(current.username)  # type: ignore
        if membership is not None:
            if membership.is_admin and \
                    PermissionsRequirement.ORGANIZATION_ADMIN in requirement:
                return True
            if not membership.is_admin and \
                    PermissionsRequirement.ORGANIZATION_COLLABORATOR \
                    in requirement:
                return True
    return bool(PermissionsRequirement.SITE_ADMIN in requirement
                and current.is_administrator)


class ActionRequiringAccountPermissions(NamedTuple):
    """An action performed on an account."""

    account_on_behalf_of: PermissionsRequirement

    def check_permissions(self, current_user: Optional[Account],
                          account: Optional[Account]) \
            -> PermissionsCheckResult:
        """Check whether ``current_user`` may act on ``account``."""
        if is_requirement_satisfied(self.account_on_behalf_of, current_user,
                                    account):
            return PermissionsCheckResult.ALLOWED
        return PermissionsCheckResult.ACCOUNT_FAILURE

    def is_allowed(self, current_user: Optional[Account],
                   account: Optional[Account]) -> bool:
        """Shorthand for an ``ALLOWED`` check."""
        return self.check_permissions(current_user, account) \
            == PermissionsCheckResult.ALLOWED


class ActionRequiringPackagePermissions(NamedTuple):
    """An action performed on a package on behalf of an account."""

    account_on_behalf_of: PermissionsRequirement
    package_registration: PermissionsRequirement

    def check_permissions(self, current_user: Optional[Account],
                          account: Optional[Account],
                          package: Package) -> PermissionsCheckResult:
        """Check whether ``current_user`` may act on ``package`` as
        ``account``."""
        if not is_requirement_satisfied(self.account_on_behalf_of,
                                        current_user, account):
            return PermissionsCheckResult.ACCOUNT_FAILURE
        if not any(is_requirement_satisfied(self.package_registration,
                                            account, owner)
                   for owner in _owners(package)):
            return PermissionsCheckResult.PACKAGE_REGISTRATION_FAILURE
        return PermissionsCheckResult.ALLOWED

    def check_permissions_on_behalf_of_any_account(
            self, current_user: Optional[Account],
            package: Package) -> PermissionsCheckResult:
        """Check the user, and every organization owning the package."""
        if current_user is None:
            return PermissionsCheckResult.ACCOUNT_FAILURE
        candidates: List[Account] = [current_user]
        candidates.extend(o for o in _owners(package) if o.is_organization)
        results = [self.check_permissions(current_user, account, package)
                   for account in candidates]
        if PermissionsCheckResult.ALLOWED in results:
            return PermissionsCheckResult.ALLOWED
        if PermissionsCheckResult.PACKAGE_REGISTRATION_FAILURE in results:
            return PermissionsCheckResult.PACKAGE_REGISTRATION_FAILURE
        return PermissionsCheckResult.ACCOUNT_FAILURE


def _owners(package: Package) -> Iterable[Account]:
    if package.registration is None:
        return []
    return package.registration.owners


# Account actions.
VIEW_ACCOUNT = ActionRequiringAccountPermissions(OWNER_OR_ORGANIZATION_MEMBER)
MANAGE_MEMBERSHIP = \
    ActionRequiringAccountPermissions(OWNER_OR_ORGANIZATION_ADMIN)
MANAGE_ACCOUNT = ActionRequiringAccountPermissions(OWNER_OR_ORGANIZATION_ADMIN)
MANAGE_CERTIFICATE = \
    ActionRequiringAccountPermissions(OWNER_OR_ORGANIZATION_ADMIN)

# Package actions.
DISPLAY_PRIVATE_PACKAGE_METADATA = ActionRequiringPackagePermissions(
    OWNER_OR_ORGANIZATION_MEMBER, OWNER_OR_ORGANIZATION_MEMBER)
EDIT_PACKAGE = ActionRequiringPackagePermissions(
    OWNER_OR_ORGANIZATION_MEMBER, OWNER_OR_ORGANIZATION_MEMBER)
UNLIST_OR_RELIST_PACKAGE = ActionRequiringPackagePermissions(
    OWNER_OR_ORGANIZATION_MEMBER,
    OWNER_OR_ORGANIZATION_MEMBER | PermissionsRequirement.SITE_ADMIN)
MANAGE_PACKAGE_OWNERSHIP = ActionRequiringPackagePermissions(
    OWNER_OR_ORGANIZATION_ADMIN,
    OWNER_OR_ORGANIZATION_ADMIN | PermissionsRequirement.SITE_ADMIN)
REPORT_PACKAGE_AS_OWNER = ActionRequiringPackagePermissions(
    OWNER_OR_ORGANIZATION_MEMBER, OWNER_OR_ORGANIZATION_MEMBER)
