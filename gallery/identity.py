"""
Helpers for external identities and their email addresses.

External credentials store their identity either as a bare email address or
as ``Display Name <email>``. The sign-in assistance view shows a masked form
of that address, e.g. ``j**********n@example.com``.
"""

import logging
import re
from typing import Callable, NamedTuple, Optional

from email_validator import EmailNotValidError, validate_email

from .domain import IdentityAssertion

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'\<(.+?)\>')
EMAIL_FORMAT_PADDING = '**********'


class IdentityInformation(NamedTuple):
    """Name and email address of an external identity."""

    name: Optional[str]
    email: Optional[str]


def extract_email(identity: Optional[str]) -> Optional[str]:
    """Get the email address out of ``Name <email>``, or the identity as is."""
    if identity is None or not identity.strip():
        return None
    match = EMAIL_PATTERN.search(identity)
    if match is None:
        return identity
    return match.group(1)


def mask_email(email: Optional[str]) -> str:
    """
    Obscure the local part of an email address for display.

    The first and last characters of the local part are kept and the rest is
    replaced by a fixed-width mask. The domain is never masked.

    Raises
    ------
    ValueError
        Raised if the address is empty or has no local part.

    """
    if email is None or not email.strip():
        raise ValueError('The associated credential does not have the email'
                         ' address. Please contact support.')
    at = email.find('@')
    if at < 1:
        raise ValueError('Invalid email address associated with the linked'
                         ' external credential')
    if at == 1:
        return email[:1] + EMAIL_FORMAT_PADDING + email[1:]
    return email[:1] + EMAIL_FORMAT_PADDING + email[at - 1:]


def is_valid_email(email: Optional[str]) -> bool:
    """Whether ``email`` is a single, syntactically valid address."""
    if not email:
        return False
    try:
        result = validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return bool(result.normalized.lower() == email.lower())


def identity_from_credential(assertion: IdentityAssertion) \
        -> IdentityInformation:
    """
    Read name and email from the identity stored on the credential.

    Raises
    ------
    ValueError
        Raised if the identity does not carry an email address.

    """
    identity = assertion.identity
    email = extract_email(identity)
    if not email or not is_valid_email(email):
        raise ValueError(f'No email address in identity {identity!r}')
    name = None
    if identity and '<' in identity:
        name = identity.split('<', 1)[0].strip() or None
    return IdentityInformation(name=name, email=email)


def identity_from_claims(assertion: IdentityAssertion) -> IdentityInformation:
    """Read name and email straight from the raw provider claims."""
    return IdentityInformation(name=assertion.claims.get('name'),
                               email=assertion.claims.get('email'))


def get_identity_information(
        assertion: IdentityAssertion,
        extract: Optional[Callable[[IdentityAssertion],
                                   IdentityInformation]] = None
) -> IdentityInformation:
    """
    Get name and email of an external identity.

    Tries the provider's own extraction first. Older providers do not
    populate the identity the way the extraction expects, so any failure
    falls back to the raw ``name`` and ``email`` claims.
    """
    extract = extract or identity_from_credential
    try:
        return extract(assertion)
    except Exception as e:
        logger.debug('Falling back to raw claims for %s: %s',
                     assertion.provider, e)
        return identity_from_claims(assertion)
