"""Tests for :mod:`gallery.identity`."""

from unittest import TestCase

from gallery.domain import Credential, IdentityAssertion
from gallery.identity import extract_email, get_identity_information, \
    identity_from_credential, is_valid_email, mask_email


def assertion(identity=None, claims=None):
    return IdentityAssertion(
        provider='MicrosoftAccount',
        credential=Credential('external.MicrosoftAccount', 'abc123',
                              identity=identity),
        claims=claims or {}
    )


class TestExtractEmail(TestCase):
    """Email addresses are read out of display identities."""

    def test_bracketed(self):
        """The address inside the brackets is returned."""
        self.assertEqual(extract_email('John Doe <john@doe.com>'),
                         'john@doe.com')

    def test_bare_address(self):
        """An identity without brackets is returned as is."""
        self.assertEqual(extract_email('john@doe.com'), 'john@doe.com')

    def test_blank(self):
        """Blank identities have no address."""
        self.assertIsNone(extract_email(None))
        self.assertIsNone(extract_email('   '))


class TestMaskEmail(TestCase):
    """Only the first and last characters of the local part are shown."""

    def test_single_character_local_part(self):
        self.assertEqual(mask_email('j@d.com'), 'j**********@d.com')

    def test_long_local_part(self):
        self.assertEqual(mask_email('john@example.com'),
                         'j**********n@example.com')

    def test_empty(self):
        with self.assertRaises(ValueError):
            mask_email('')

    def test_no_at_sign(self):
        with self.assertRaises(ValueError):
            mask_email('johnexample.com')

    def test_no_local_part(self):
        with self.assertRaises(ValueError):
            mask_email('@example.com')


class TestIsValidEmail(TestCase):
    def test_valid(self):
        self.assertTrue(is_valid_email('john@doe.com'))

    def test_invalid(self):
        self.assertFalse(is_valid_email('not an email'))
        self.assertFalse(is_valid_email(''))
        self.assertFalse(is_valid_email(None))


class TestIdentityInformation(TestCase):
    """Name and email come from the credential, or from the raw claims."""

    def test_from_credential(self):
        """Name and email are parsed out of the display identity."""
        info = identity_from_credential(assertion('John Doe <john@doe.com>'))
        self.assertEqual(info.name, 'John Doe')
        self.assertEqual(info.email, 'john@doe.com')

    def test_credential_without_email(self):
        """Identities without an address cannot be parsed."""
        with self.assertRaises(ValueError):
            identity_from_credential(assertion('John Doe'))

    def test_falls_back_to_claims(self):
        """When the identity cannot be parsed, the raw claims are used."""
        info = get_identity_information(assertion(
            'John Doe',
            {'name': 'Johnny', 'email': 'johnny@doe.com'}
        ))
        self.assertEqual(info.name, 'Johnny')
        self.assertEqual(info.email, 'johnny@doe.com')

    def test_custom_extraction_failure(self):
        """Any failure of a provider's extraction falls back to claims."""
        def broken(assertion):
            raise KeyError('upn')

        info = get_identity_information(
            assertion('John Doe <john@doe.com>', {'email': 'other@doe.com'}),
            broken
        )
        self.assertEqual(info.email, 'other@doe.com')
        self.assertIsNone(info.name)
