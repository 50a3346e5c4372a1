"""Tests for :mod:`gallery.linking`."""

from unittest import TestCase, mock
from urllib.parse import quote_plus

import fakeredis

from gallery.domain import AuthenticatedUser, Credential, \
    IdentityAssertion, LinkingOutcome, Organization, User
from gallery.linking import LinkingEngine, State, format_lock_time, \
    lock_message, parse_enforced_providers, \
    should_challenge_enforced_provider
from gallery.services import AuthenticationService, MessageService, \
    UserService
from gallery.services import notices
from gallery.services.exceptions import AccountAlreadyLinked, \
    AccountIsOrganization, EntityException, PendingLoginExpired
from gallery.services.pending_logins import PendingLoginStore
from gallery.services.providers import from_config
from gallery.services.sessions import SessionStore

PASSWORD = Credential('password.v3', 'hashed')
MSA = Credential('external.MicrosoftAccount', 'msa-123',
                 identity='Jane Doe <jane@doe.com>')
OTHER_MSA = Credential('external.MicrosoftAccount', 'msa-456',
                       identity='Jane Doe <jane@other.com>')


def authenticated_as(user, credential):
    return AuthenticatedUser(user, credential)


class TestLockMessage(TestCase):
    """Lock messages read naturally for any duration."""

    def test_one_minute(self):
        self.assertEqual(format_lock_time(1), 'a minute')
        self.assertIn('Please try again in a minute.', lock_message(1))

    def test_many_minutes(self):
        for minutes in (2, 5, 30, 120):
            self.assertEqual(format_lock_time(minutes), f'{minutes} minutes')
            self.assertIn(f'try again in {minutes} minutes.',
                          lock_message(minutes))


class TestEnforcedProviderPolicy(TestCase):
    """Administrators may be required to sign in with certain providers."""

    def setUp(self):
        self.admin = User('admin', 'admin@gallery.org', is_administrator=True)
        self.user = User('user', 'user@gallery.org')

    def test_parse(self):
        """Empty entries and whitespace are ignored."""
        self.assertEqual(parse_enforced_providers(' AAD ;; MSA;'),
                         ['AAD', 'MSA'])
        self.assertEqual(parse_enforced_providers(''), [])
        self.assertEqual(parse_enforced_providers(None), [])

    def test_admin_with_enforced_provider(self):
        """Sign-in completes with one of the enforced providers."""
        used = authenticated_as(self.admin, Credential('MSA'))
        self.assertIsNone(should_challenge_enforced_provider('AAD;MSA', used))

    def test_admin_with_password(self):
        """The first enforced provider is challenged."""
        used = authenticated_as(self.admin, Credential('Password'))
        self.assertEqual(should_challenge_enforced_provider('AAD;MSA', used),
                         'AAD')

    def test_external_prefix(self):
        """Provider names match credential types with the external prefix."""
        used = authenticated_as(self.admin, MSA)
        self.assertIsNone(should_challenge_enforced_provider(
            'MicrosoftAccount', used))

    def test_not_an_admin(self):
        """The policy only applies to administrators."""
        used = authenticated_as(self.user, PASSWORD)
        self.assertIsNone(should_challenge_enforced_provider('AAD;MSA', used))

    def test_no_policy(self):
        used = authenticated_as(self.admin, PASSWORD)
        self.assertIsNone(should_challenge_enforced_provider('', used))
        self.assertIsNone(should_challenge_enforced_provider(None, used))


class EngineTestCase(TestCase):
    """Runs the engine against mocked services and in-memory stores."""

    def setUp(self):
        self.r = fakeredis.FakeStrictRedis()
        self.sessions = SessionStore(self.r, 'foosecret', 3600)
        self.pending_logins = PendingLoginStore(self.r, 'foosecret', 300)
        self.auth = mock.MagicMock(spec=AuthenticationService)
        self.users = mock.MagicMock(spec=UserService)
        self.messages = mock.MagicMock(spec=MessageService)
        self.auth.describe_credential.return_value = 'Microsoft account'
        providers = from_config({
            'MicrosoftAccount': {
                'enabled': True,
                'account_noun': 'Microsoft account',
                'authorize_url': 'https://login.live.com/authorize'
            }
        })
        self.engine = LinkingEngine(self.auth, self.users, self.messages,
                                    self.sessions, self.pending_logins,
                                    providers)
        self.assertion = IdentityAssertion(
            'MicrosoftAccount', MSA,
            {'name': 'Jane Doe', 'email': 'jane@doe.com'}
        )

    def pending(self, assertion=None):
        return self.pending_logins.create(assertion or self.assertion)

    def session_keys(self):
        return self.r.keys(SessionStore.PREFIX + '*')


class TestAuthenticate(EngineTestCase):
    """Sign in with a password, optionally linking the pending identity."""

    def test_sign_in(self):
        """A session is established for a valid password."""
        user = User('jane', 'jane@doe.com', credentials=[PASSWORD])
        self.auth.authenticate.return_value = authenticated_as(user, PASSWORD)

        decision = self.engine.authenticate('jane', 'secret')

        self.assertEqual(decision.state, State.SESSION_ESTABLISHED)
        self.assertEqual(decision.outcome, LinkingOutcome.SUCCESS)
        self.assertEqual(decision.session.username, 'jane')
        self.assertEqual(len(self.session_keys()), 1)
        self.assertIsNone(decision.notices, 'No notices are shared')

    def test_absent_pending_login(self):
        """Linking without a pending login always fails."""
        for cookie in (None, '', 'not-a-jwt'):
            with self.assertRaises(PendingLoginExpired) as ctx:
                self.engine.authenticate('jane', 'secret', linking=True,
                                         pending_cookie=cookie)
            self.assertEqual(ctx.exception.outcome,
                             LinkingOutcome.EXPIRED_PENDING_LOGIN)
        self.auth.authenticate.assert_not_called()

    def test_consumed_pending_login(self):
        """A pending login that was already used cannot be linked again."""
        cookie = self.pending()
        self.pending_logins.consume(cookie)
        with self.assertRaises(PendingLoginExpired):
            self.engine.authenticate('jane', 'secret', linking=True,
                                     pending_cookie=cookie)
        self.assertEqual(self.session_keys(), [])

    def test_link(self):
        """The identity is linked and the password removed."""
        user = User('jane', 'jane@doe.com', credentials=[PASSWORD])
        self.auth.authenticate.return_value = authenticated_as(user, PASSWORD)
        cookie = self.pending()

        decision = self.engine.authenticate('jane', 'secret', linking=True,
                                            pending_cookie=cookie)

        self.assertEqual(decision.state, State.SESSION_ESTABLISHED)
        self.assertEqual(decision.authenticated.credential_used, MSA)
        self.auth.add_credential.assert_called_once_with(user, MSA)
        self.auth.remove_credential.assert_called_once_with(user, PASSWORD)
        self.messages.send_credential_added_notice.assert_called_once_with(
            user, 'Microsoft account')
        self.assertIsNone(self.pending_logins.peek(cookie),
                          'The pending login is consumed')

    def test_non_admin_already_linked(self):
        """A second external credential is refused to regular users."""
        user = User('jane', 'jane@doe.com',
                    credentials=[PASSWORD, OTHER_MSA])
        self.auth.authenticate.return_value = authenticated_as(user, PASSWORD)
        cookie = self.pending()

        with self.assertRaises(AccountAlreadyLinked) as ctx:
            self.engine.authenticate('jane', 'secret', linking=True,
                                     pending_cookie=cookie)
        self.assertEqual(ctx.exception.email_address, 'jane@doe.com')
        self.assertEqual(ctx.exception.outcome, LinkingOutcome.ALREADY_LINKED)
        self.auth.add_credential.assert_not_called()
        self.assertIsNotNone(self.pending_logins.peek(cookie),
                             'The pending login is kept for another try')
        self.assertEqual(self.session_keys(), [])

    def test_admin_with_multiple_external_credentials(self):
        """Administrators may hold more than one external credential."""
        admin = User('admin', 'admin@gallery.org', is_administrator=True,
                     credentials=[PASSWORD, OTHER_MSA])
        self.auth.authenticate.return_value = authenticated_as(admin,
                                                               PASSWORD)
        decision = self.engine.authenticate('admin', 'secret', linking=True,
                                            pending_cookie=self.pending())
        self.assertEqual(decision.state, State.SESSION_ESTABLISHED)
        self.auth.add_credential.assert_called_once_with(admin, MSA)

    def test_organization(self):
        """Organizations cannot link external credentials."""
        organization = Organization('acme', 'acme@gallery.org')
        self.auth.authenticate.return_value = authenticated_as(organization,
                                                               PASSWORD)
        with self.assertRaises(AccountIsOrganization):
            self.engine.authenticate('acme', 'secret', linking=True,
                                     pending_cookie=self.pending())

    def test_admin_challenged(self):
        """An administrator signing in with a password is challenged."""
        admin = User('admin', 'admin@gallery.org', is_administrator=True,
                     credentials=[PASSWORD])
        self.auth.authenticate.return_value = authenticated_as(admin,
                                                               PASSWORD)
        decision = self.engine.authenticate('admin', 'secret',
                                            enforced_providers='AAD;MSA')
        self.assertEqual(decision.state, State.CHALLENGED)
        self.assertEqual(decision.challenge_provider, 'AAD')
        self.assertIsNone(decision.session)
        self.assertEqual(self.session_keys(), [])


class TestRegister(EngineTestCase):
    """Create an account with a password or with the pending identity."""

    def test_register(self):
        """One session and one new account notification."""
        user = User('jane', None, credentials=[PASSWORD],
                    unconfirmed_email_address='jane@doe.com',
                    email_confirmation_token='token')
        self.auth.create_password_credential.return_value = PASSWORD
        self.auth.register.return_value = authenticated_as(user, PASSWORD)

        decision = self.engine.register(
            'jane', 'jane@doe.com', 'secretpassword',
            confirmation_url=lambda u: f'/confirm/{u.username}'
        )

        self.assertEqual(decision.state, State.SESSION_ESTABLISHED)
        self.auth.register.assert_called_once_with('jane', 'jane@doe.com',
                                                   PASSWORD)
        self.messages.send_new_account_email.assert_called_once_with(
            user, '/confirm/jane')
        self.assertEqual(len(self.session_keys()), 1)

    def test_without_confirmation(self):
        """No email is sent when confirmation is turned off."""
        user = User('jane', None, unconfirmed_email_address='jane@doe.com')
        self.auth.register.return_value = authenticated_as(user, PASSWORD)
        self.engine.register('jane', 'jane@doe.com', 'secretpassword',
                             confirm_email_addresses=False)
        self.messages.send_new_account_email.assert_not_called()

    def test_register_with_external_identity(self):
        """The pending identity becomes the credential of the account."""
        user = User('jane', None, credentials=[MSA])
        self.auth.register.return_value = authenticated_as(user, MSA)
        cookie = self.pending()

        decision = self.engine.register('jane', 'jane@doe.com', linking=True,
                                        pending_cookie=cookie)

        self.assertEqual(decision.state, State.SESSION_ESTABLISHED)
        self.auth.register.assert_called_once_with('jane', 'jane@doe.com',
                                                   MSA)
        self.auth.create_password_credential.assert_not_called()
        self.assertIsNone(self.pending_logins.peek(cookie))

    def test_expired_pending_login(self):
        with self.assertRaises(PendingLoginExpired):
            self.engine.register('jane', 'jane@doe.com', linking=True,
                                 pending_cookie=None)
        self.auth.register.assert_not_called()

    def test_validation_failure_restores_pending_login(self):
        """A rejected registration can be retried with the same identity."""
        self.auth.register.side_effect = \
            EntityException('The username is already taken.')
        cookie = self.pending()

        with self.assertRaises(EntityException):
            self.engine.register('jane', 'jane@doe.com', linking=True,
                                 pending_cookie=cookie)
        self.assertEqual(self.pending_logins.peek(cookie), self.assertion)
        self.assertEqual(self.session_keys(), [])


class TestLinkExternalAccount(EngineTestCase):
    """Resolve the pending identity after the provider handshake."""

    def test_already_linked(self):
        """The linked account is signed in."""
        user = User('jane', 'jane@doe.com', credentials=[MSA])
        self.auth.authenticate_external_login.return_value = \
            authenticated_as(user, MSA)
        cookie = self.pending()

        decision = self.engine.link_external_account(cookie)

        self.assertEqual(decision.state, State.SESSION_ESTABLISHED)
        self.assertIsNone(self.pending_logins.peek(cookie))

    def test_unlinked(self):
        """The identity is described, and the pending login kept."""
        self.auth.authenticate_external_login.return_value = None
        self.users.find_by_email_address.return_value = None
        cookie = self.pending()

        decision = self.engine.link_external_account(cookie)

        self.assertEqual(decision.state, State.UNLINKED)
        association = decision.association
        self.assertEqual(association.provider_account_noun,
                         'Microsoft account')
        self.assertEqual(association.account_name, 'Jane Doe')
        self.assertEqual(association.email_address, 'jane@doe.com')
        self.assertFalse(association.found_existing_user)
        self.assertIsNone(association.existing_user_linking_error)
        self.assertEqual(self.pending_logins.peek(cookie), self.assertion)

    def test_existing_user_already_linked(self):
        self.auth.authenticate_external_login.return_value = None
        self.users.find_by_email_address.return_value = \
            User('jane', 'jane@doe.com', credentials=[OTHER_MSA])

        decision = self.engine.link_external_account(self.pending())

        self.assertTrue(decision.association.found_existing_user)
        self.assertEqual(decision.outcome, LinkingOutcome.ALREADY_LINKED)

    def test_existing_organization(self):
        self.auth.authenticate_external_login.return_value = None
        self.users.find_by_email_address.return_value = \
            Organization('acme', 'jane@doe.com')

        decision = self.engine.link_external_account(self.pending())

        self.assertEqual(decision.outcome,
                         LinkingOutcome.ACCOUNT_IS_ORGANIZATION)

    def test_expired(self):
        with self.assertRaises(PendingLoginExpired):
            self.engine.link_external_account('expired')

    def test_describe_without_side_effects(self):
        """Describing the identity never signs in or consumes it."""
        cookie = self.pending()
        self.users.find_by_email_address.return_value = None
        association = self.engine.describe_external_account(cookie)
        self.assertEqual(association.email_address, 'jane@doe.com')
        self.auth.authenticate_external_login.assert_not_called()
        self.assertIsNotNone(self.pending_logins.peek(cookie))
        self.assertIsNone(self.engine.describe_external_account(None))


class TestLinkOrChangeExternalCredential(EngineTestCase):
    """Replace the external credential of a signed-in user."""

    def setUp(self):
        super().setUp()
        self.user = User('jane', 'jane@gallery.org',
                         credentials=[PASSWORD, OTHER_MSA])

    def test_replaced(self):
        self.auth.try_replace_credential.return_value = True
        self.auth.authenticate_credential.return_value = \
            authenticated_as(self.user, MSA)

        decision = self.engine.link_or_change_external_credential(
            self.user, self.pending())

        self.assertEqual(decision.state, State.SESSION_ESTABLISHED)
        self.auth.remove_credential.assert_called_once_with(self.user,
                                                            PASSWORD)
        self.messages.send_credential_changed_notice.assert_called_once_with(
            self.user, 'Microsoft account')
        self.assertEqual(
            decision.notices[notices.MESSAGE],
            'Successfully linked account jane@doe.com. Your account email'
            ' address is still jane@gallery.org.'
        )

    def test_replaced_same_email(self):
        user = self.user._replace(email_address='Jane@Doe.com')
        self.auth.try_replace_credential.return_value = True
        self.auth.authenticate_credential.return_value = \
            authenticated_as(user, MSA)

        decision = self.engine.link_or_change_external_credential(
            user, self.pending())

        self.assertEqual(decision.notices[notices.MESSAGE],
                         'Successfully linked account jane@doe.com.')

    def test_not_replaced(self):
        """The credential belongs to someone else."""
        self.auth.try_replace_credential.return_value = False

        decision = self.engine.link_or_change_external_credential(
            self.user, self.pending())

        self.assertEqual(decision.state, State.REJECTED)
        self.assertEqual(decision.outcome, LinkingOutcome.ALREADY_LINKED)
        self.assertIn(quote_plus(MSA.identity),
                      decision.notices[notices.ERROR_MESSAGE])
        self.assertEqual(self.session_keys(), [])

    def test_expired(self):
        with self.assertRaises(PendingLoginExpired):
            self.engine.link_or_change_external_credential(self.user, None)
