"""Tests for :mod:`gallery.routes.ui`."""

import io
from http import HTTPStatus as status
from unittest import TestCase, mock

from gallery.domain import AuthenticatedUser, Certificate, Credential, \
    IdentityAssertion, Membership, MembershipRequest, Organization, User
from gallery.factory import create_web_app
from gallery.services import AuthenticationService, CertificateService, \
    MessageService, PackageService, Services, UserService
from gallery.services.exceptions import BadCredentials
from gallery.services.sessions import current_session

PASSWORD = Credential('password.v3', 'hashed')
JANE = User('jane', 'jane@doe.com', credentials=[PASSWORD])
JOE = User('joe', 'joe@doe.com', credentials=[
    Credential('external.MicrosoftAccount', 'msa-123',
               identity='Joe <joe@doe.com>')
])
ORGANIZATION = Organization('acme', 'acme@gallery.org', members=[
    Membership('acme', JANE, is_admin=True),
])


class TestUIRoutes(TestCase):
    """Routes translate requests into controller calls and back."""

    def setUp(self):
        self.services = Services(
            auth=mock.MagicMock(spec=AuthenticationService),
            users=mock.MagicMock(spec=UserService),
            messages=mock.MagicMock(spec=MessageService),
            certificates=mock.MagicMock(spec=CertificateService),
            packages=mock.MagicMock(spec=PackageService)
        )
        self.app = create_web_app(self.services)
        self.app.config['REDIS_FAKE'] = True
        self.app.config['AUTH_SESSION_COOKIE_DOMAIN'] = None
        self.app.config['AUTH_SESSION_COOKIE_SECURE'] = False
        self.app.config['ENFORCED_AUTH_PROVIDER_FOR_ADMIN'] = ''
        self.accounts = {'jane': JANE, 'joe': JOE, 'acme': ORGANIZATION}
        self.services.users.find_by_username.side_effect = \
            lambda name: self.accounts.get(name)
        self.client = self.app.test_client()
        self.session_cookie_name = self.app.config['AUTH_SESSION_COOKIE_NAME']

    def sign_in_as(self, user):
        with self.app.app_context():
            sessions = current_session()
            session = sessions.create(AuthenticatedUser(user, PASSWORD))
            cookie = sessions.generate_cookie(session)
        self.client.set_cookie(self.session_cookie_name, cookie)

    def test_status(self):
        response = self.client.get('/auth_status')
        self.assertEqual(response.status_code, status.OK)
        self.assertEqual(response.data, b'OK')

    def test_log_on_page(self):
        response = self.client.get('/users/account/LogOn?returnUrl=/packages')
        self.assertEqual(response.status_code, status.OK)
        self.assertIn(b'Sign in with', response.data)
        self.assertEqual(response.headers['X-Frame-Options'], 'DENY')

    def test_sign_in(self):
        """A session cookie is set on sign in."""
        self.services.auth.authenticate.return_value = \
            AuthenticatedUser(JANE, PASSWORD)
        response = self.client.post('/users/account/SignIn', data={
            'username_or_email': 'jane',
            'password': 'secret',
            'returnUrl': '/packages'
        })
        self.assertEqual(response.status_code, status.SEE_OTHER)
        self.assertTrue(response.headers['Location'].endswith('/packages'))
        self.assertIsNotNone(self.client.get_cookie(self.session_cookie_name))

        response = self.client.get('/users/account/LogOn')
        self.assertEqual(response.status_code, status.SEE_OTHER,
                         'Signed in users are sent on')

    def test_sign_in_failed(self):
        self.services.auth.authenticate.side_effect = BadCredentials('nope')
        response = self.client.post('/users/account/SignIn', data={
            'username_or_email': 'jane',
            'password': 'wrong'
        })
        self.assertEqual(response.status_code, status.BAD_REQUEST)
        self.assertIn(b'combination was wrong', response.data)
        self.assertIsNone(self.client.get_cookie(self.session_cookie_name))

    def test_notices_shown_once(self):
        """Notices left by a redirect are shown on the next page only."""
        response = self.client.get('/users/account/LinkExternalAccount')
        self.assertEqual(response.status_code, status.SEE_OTHER)
        self.assertIn('/users/account/LogOn', response.headers['Location'])

        response = self.client.get('/users/account/LogOn')
        self.assertIn(b'Your external login session has expired.',
                      response.data)
        response = self.client.get('/users/account/LogOn')
        self.assertNotIn(b'Your external login session has expired.',
                         response.data)

    def test_external_login(self):
        """After the handshake the user is offered to link the identity."""
        self.services.auth.read_external_login.return_value = \
            IdentityAssertion('MicrosoftAccount', Credential(
                'external.MicrosoftAccount', 'msa-456',
                identity='Jane Doe <jane@doe.com>'))
        self.services.auth.authenticate_external_login.return_value = None
        self.services.users.find_by_email_address.return_value = None

        response = self.client.get(
            '/users/account/authenticate/return/MicrosoftAccount'
            '?action=link&code=xyz')
        self.assertEqual(response.status_code, status.SEE_OTHER)
        self.services.auth.read_external_login.assert_called_once_with(
            'MicrosoftAccount', {'action': 'link', 'code': 'xyz'})

        response = self.client.get('/users/account/LinkExternalAccount')
        self.assertEqual(response.status_code, status.OK)
        self.assertIn(b'Link your', response.data)
        self.assertIn(b'jane@doe.com', response.data)

    def test_log_off(self):
        self.sign_in_as(JANE)
        response = self.client.get('/users/account/LogOff')
        self.assertEqual(response.status_code, status.SEE_OTHER)
        self.assertIsNone(self.client.get_cookie(self.session_cookie_name))

    def test_authorization_required(self):
        """Anonymous users are sent to sign in, and then back."""
        response = self.client.get('/organization/add')
        self.assertEqual(response.status_code, status.SEE_OTHER)
        self.assertIn('/users/account/LogOn?returnUrl=',
                      response.headers['Location'])

    def test_add_organization_page(self):
        self.sign_in_as(JANE)
        response = self.client.get('/organization/add')
        self.assertEqual(response.status_code, status.OK)
        self.assertIn(b'Add organization', response.data)

    def test_signin_assistance(self):
        response = self.client.post('/users/account/SigninAssistance',
                                    data={'username': 'joe'})
        self.assertEqual(response.status_code, status.OK)
        self.assertEqual(response.get_json(),
                         {'success': True,
                          'EmailAddress': 'j**********e@doe.com'})

    def test_signin_assistance_signed_in(self):
        self.sign_in_as(JANE)
        response = self.client.post('/users/account/SigninAssistance',
                                    data={'username': 'joe'})
        self.assertEqual(response.status_code, status.SEE_OTHER)

    def test_signed_in_foreign_return_url(self):
        """Signed-in users are not sent off site."""
        self.sign_in_as(JANE)
        default = self.app.config['DEFAULT_LOGIN_REDIRECT_URL']
        for return_url in ('https://evil.com/', '/\\evil.com'):
            response = self.client.post(
                '/users/account/SigninAssistance',
                data={'username': 'joe', 'returnUrl': return_url})
            self.assertEqual(response.status_code, status.SEE_OTHER)
            self.assertEqual(response.headers['Location'], default)

    def test_add_member(self):
        self.sign_in_as(JANE)
        self.services.users.add_membership_request.return_value = \
            MembershipRequest('acme', JOE, False, 'token123')
        response = self.client.post('/organization/acme/members/add',
                                    data={'memberName': 'joe'})
        self.assertEqual(response.status_code, status.OK)
        self.assertEqual(response.get_json()['Username'], 'joe')
        self.services.users.add_membership_request.assert_called_once_with(
            ORGANIZATION, 'joe', False)

    def test_add_member_forbidden(self):
        self.sign_in_as(JOE)
        response = self.client.post('/organization/acme/members/add',
                                    data={'memberName': 'joe',
                                          'isAdmin': 'true'})
        self.assertEqual(response.status_code, status.FORBIDDEN)
        self.assertEqual(response.get_json(), {'message': 'Unauthorized'})

    def test_manage_organization_page(self):
        self.sign_in_as(JANE)
        response = self.client.get('/organization/acme/Manage')
        self.assertEqual(response.status_code, status.OK)
        self.assertIn(b'Add member', response.data)

        self.sign_in_as(JOE)
        response = self.client.get('/organization/acme/Manage')
        self.assertEqual(response.status_code, status.FORBIDDEN)

    def test_upload_certificate(self):
        self.sign_in_as(JANE)
        self.services.certificates.add_certificate.return_value = \
            Certificate('ABC123')
        response = self.client.post(
            '/organization/acme/certificates',
            data={'uploadFile': (io.BytesIO(b'certificate'), 'acme.cer')},
            content_type='multipart/form-data'
        )
        self.assertEqual(response.status_code, status.CREATED)
        self.assertEqual(response.get_json()['Thumbprint'], 'ABC123')
        self.services.certificates.add_certificate.assert_called_once()

    def test_manage_packages_page(self):
        self.sign_in_as(JANE)
        self.services.packages.find_packages_by_owner.return_value = []
        response = self.client.get('/account/jane/Packages')
        self.assertEqual(response.status_code, status.OK)
        self.assertIn(b'Packages of jane', response.data)

    def test_unknown_account(self):
        self.sign_in_as(JANE)
        response = self.client.get('/account/nobody/Packages')
        self.assertEqual(response.status_code, status.NOT_FOUND)
