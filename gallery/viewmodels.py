"""View models handed to templates and JSON responses."""

from functools import cached_property
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from . import permissions
from .domain import Account, Certificate, LinkingOutcome, Membership, \
    MembershipRequest, Organization, Package, User

DESCRIPTION_LENGTH_LIMIT = 300
OMISSION = '...'


def truncate_at_word_boundary(text: Optional[str], length: int,
                              omission: str) -> Tuple[Optional[str], bool]:
    """
    Shorten ``text`` to about ``length`` characters without splitting a word.

    Returns
    -------
    str
        The (possibly) shortened text, with ``omission`` appended if cut.
    bool
        Whether the text was cut.

    """
    if not text or len(text) < length:
        return text, False
    space = text.rfind(' ', 0, length + 1)
    cut = space if space > 0 else length
    return f'{text[:cut].strip()}{omission}', True


class AuthenticationProviderViewModel(NamedTuple):
    """A provider offered on the sign-in page."""

    provider_name: str
    account_noun: str


class AssociateExternalAccountViewModel(NamedTuple):
    """What we know about an external identity that is not linked yet."""

    provider_account_noun: str
    account_name: Optional[str]
    email_address: Optional[str]
    found_existing_user: bool = False
    existing_user_linking_error: Optional[LinkingOutcome] = None
    """``ALREADY_LINKED`` or ``ACCOUNT_IS_ORGANIZATION``, if linking to the
    account holding the same email address is not possible."""


class OrganizationMemberViewModel(NamedTuple):
    """A member, or an invited member, of an organization."""

    username: str
    email_address: Optional[str]
    is_admin: bool
    pending: bool

    @classmethod
    def from_membership(cls, membership: Membership) \
            -> 'OrganizationMemberViewModel':
        return cls(username=membership.member.username,
                   email_address=membership.member.email_address,
                   is_admin=membership.is_admin,
                   pending=False)

    @classmethod
    def from_request(cls, request: MembershipRequest) \
            -> 'OrganizationMemberViewModel':
        return cls(username=request.new_member.username,
                   email_address=request.new_member.email_address,
                   is_admin=request.is_admin,
                   pending=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'Username': self.username,
            'EmailAddress': self.email_address,
            'IsAdmin': self.is_admin,
            'Pending': self.pending,
        }


class OrganizationAccountViewModel(NamedTuple):
    """The manage organization page."""

    account: Organization
    members: List[OrganizationMemberViewModel]
    requires_tenant: bool
    can_manage_memberships: bool

    @classmethod
    def build(cls, account: Organization, current_user: Optional[User]) \
            -> 'OrganizationAccountViewModel':
        members = [OrganizationMemberViewModel.from_membership(m)
                   for m in account.members]
        members += [OrganizationMemberViewModel.from_request(r)
                    for r in account.member_requests]
        return cls(
            account=account,
            members=members,
            requires_tenant=account.restricted_to_tenant,
            can_manage_memberships=permissions.MANAGE_MEMBERSHIP.is_allowed(
                current_user, account)
        )


class CertificateViewModel(NamedTuple):
    """A certificate as listed on the account page."""

    certificate: Certificate
    can_delete: bool
    delete_url: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        expiration = self.certificate.expiration
        return {
            'Thumbprint': self.certificate.thumbprint,
            'Subject': self.certificate.subject,
            'Issuer': self.certificate.issuer,
            'Expiration': expiration.isoformat() if expiration else None,
            'IsExpired': self.certificate.expired,
            'CanDelete': self.can_delete,
            'DeleteUrl': self.delete_url,
        }


class PackageViewModel(object):
    """Fields shared by all package views."""

    def __init__(self, package: Package) -> None:
        self.id = package.id
        self.version = package.version
        self.title = package.title or package.id
        self.description = package.description
        self.listed = package.listed
        self.is_semver2 = package.is_semver2
        self.latest_version = package.is_latest
        self.latest_stable_version = package.is_latest_stable
        self.latest_version_semver2 = package.is_latest_semver2
        self.latest_stable_version_semver2 = package.is_latest_stable_semver2


class ListPackageItemViewModel(PackageViewModel):
    """A package in a list, with the fields the current user may see."""

    def __init__(self, package: Package, current_user: Optional[User]) -> None:
        super().__init__(package)
        self.tags: Optional[List[str]] = None
        if package.tags is not None:
            self.tags = [t.strip() for t in package.tags.split(' ') if t]
        self.authors = package.flattened_authors
        self.min_client_version = package.min_client_version
        registration = package.registration
        self.owners: Optional[List[Account]] = \
            registration.owners if registration else None
        self.is_verified = registration.is_verified if registration else None

        self.short_description, self.is_description_truncated = \
            truncate_at_word_boundary(self.description,
                                      DESCRIPTION_LENGTH_LIMIT, OMISSION)

        self.can_display_private_metadata = _can_perform(
            current_user, package,
            permissions.DISPLAY_PRIVATE_PACKAGE_METADATA)
        self.pushed_by: Optional[str] = None
        if self.can_display_private_metadata:
            self.pushed_by = _get_pushed_by(package, current_user)

        self.can_edit = _can_perform(current_user, package,
                                     permissions.EDIT_PACKAGE)
        self.can_unlist_or_relist = _can_perform(
            current_user, package, permissions.UNLIST_OR_RELIST_PACKAGE)
        self.can_manage_owners = _can_perform(
            current_user, package, permissions.MANAGE_PACKAGE_OWNERSHIP)
        self.can_report_as_owner = _can_perform(
            current_user, package, permissions.REPORT_PACKAGE_AS_OWNER)

    @property
    def use_version(self) -> bool:
        # Only use the version in URLs when the latest version is not the
        # latest stable version.
        return not (not self.is_semver2 and self.latest_version
                    and self.latest_stable_version) \
            and not (self.is_semver2 and self.latest_stable_version_semver2
                     and self.latest_version_semver2)

    @property
    def has_single_user_owner(self) -> bool:
        """Whether exactly one user, directly or through organizations,
        owns the package."""
        owners = self.owners or []
        users = {o.username for o in owners if not o.is_organization}
        if len(users) > 1:
            return False
        for organization in (o for o in owners if o.is_organization):
            users |= {m.member.username
                      for m in organization.members  # type: ignore
                      if not m.member.is_organization}
            if len(users) > 1:
                return False
        return bool(users)

    @property
    def has_single_organization_owner(self) -> bool:
        return len({o.username for o in self.owners or []}) < 2


def _can_perform(current_user: Optional[User], package: Package,
                 action: permissions.ActionRequiringPackagePermissions) \
        -> bool:
    return action.check_permissions_on_behalf_of_any_account(
        current_user, package) == permissions.PermissionsCheckResult.ALLOWED


def _get_pushed_by(package: Package,
                   current_user: Optional[User]) -> Optional[str]:
    pushed_by = package.user
    owners = package.registration.owners if package.registration else []
    # Members of owning organizations are only shown to fellow members.
    organizations = [o for o in owners if o.is_organization
                     and permissions.VIEW_ACCOUNT.is_allowed(pushed_by, o)]
    if organizations:
        if any(permissions.VIEW_ACCOUNT.is_allowed(current_user, o)
               for o in organizations):
            return pushed_by.username if pushed_by else None
        return organizations[0].username
    return pushed_by.username if pushed_by else None


class DeleteOrganizationViewModel(object):
    """The delete organization page."""

    def __init__(self, organization: Organization, account_name: str,
                 packages: Optional[List[ListPackageItemViewModel]]) -> None:
        self.organization = organization
        self.account_name = account_name
        self.packages = packages

    @cached_property
    def _has_orphan_packages(self) -> bool:
        return any(p.has_single_organization_owner
                   for p in self.packages or [])

    @property
    def has_orphan_packages(self) -> bool:
        """Whether deleting the organization would leave packages
        without an owner."""
        if self.packages is None:
            return False
        return self._has_orphan_packages
