"""Flask configuration."""
import secrets
import os
import re

#################### General config for app ####################
BASE_SERVER = os.environ.get('BASE_SERVER', 'www.nuget.org')
"""Sets base server for use when doman name is needed.

The default configs for `DEFAULT_LOGIN_REDIRECT_URL`,
`DEFAULT_LOGOUT_REDIRECT_URL` and `AUTH_SESSION_COOKIE_DOMAIN` will use
this. They can be independently configured if needed.
"""

HOME_URL = os.environ.get('HOME_URL', '/')
"""Home page. Registration without a return URL lands on the thanks page."""

DEFAULT_LOGIN_REDIRECT_URL = os.environ.get('DEFAULT_LOGIN_REDIRECT_URL',
                                            HOME_URL)
"""URL to redirect the user to on a successful login, if they have not provided
a `returnUrl` query param."""

DEFAULT_LOGOUT_REDIRECT_URL = os.environ.get('DEFAULT_LOGOUT_REDIRECT_URL',
                                             HOME_URL)
"""URL to redirect the user to on a logout."""


_relative_urls = r"(^\/(?!\\)(?:[^\/]+\/)*[^\/]*$)"
_absolute_urls = rf"(^https://([a-zA-Z0-9\-.])*{re.escape(BASE_SERVER)}/.*$)"
LOGIN_REDIRECT_REGEX = os.environ.get('LOGIN_REDIRECT_REGEX',
                                      f"{_relative_urls}|{_absolute_urls}")
"""Regex to check return URLs.

Only return URLs that match this regex will be followed. All others will go to
the DEFAULT_LOGIN_REDIRECT_URL. The default value allows relative URLs and
URLs to subdomains of the BASE_SERVER.
"""

#################### Sessions ####################
REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = os.environ.get('REDIS_PORT', '6379')
REDIS_DATABASE = os.environ.get('REDIS_DATABASE', '0')
REDIS_TOKEN = os.environ.get('REDIS_TOKEN', None)
"""This is the token used in the AUTH procedure."""

REDIS_FAKE = bool(int(os.environ.get('REDIS_FAKE', '0')))
"""Use the FakeRedis library instead of a redis service.

Useful for testing and development."""

JWT_SECRET = os.environ.get('JWT_SECRET', secrets.token_urlsafe(16))
"""Signs session, pending login and notice cookies."""

SESSION_DURATION = os.environ.get('SESSION_DURATION', '36000')

AUTH_SESSION_COOKIE_NAME = os.environ.get('AUTH_SESSION_COOKIE_NAME',
                                          'GALLERY_SESSION_ID')
AUTH_SESSION_COOKIE_DOMAIN = os.environ.get('AUTH_SESSION_COOKIE_DOMAIN',
                                            f'.{BASE_SERVER}')
AUTH_SESSION_COOKIE_SECURE = bool(int(os.environ.get(
    'AUTH_SESSION_COOKIE_SECURE', '1')))

PENDING_LOGIN_COOKIE_NAME = os.environ.get('PENDING_LOGIN_COOKIE_NAME',
                                           'GALLERY_EXTERNAL_LOGIN')
PENDING_LOGIN_DURATION = os.environ.get('PENDING_LOGIN_DURATION', '300')
"""Seconds an external identity may wait to be linked or registered."""

NOTICE_COOKIE_NAME = os.environ.get('NOTICE_COOKIE_NAME', 'GALLERY_NOTICES')
NOTICE_DURATION = os.environ.get('NOTICE_DURATION', '120')
"""Seconds a notice survives waiting for the redirected request."""


#################### Authentication policy ####################
ENFORCED_AUTH_PROVIDER_FOR_ADMIN = os.environ.get(
    'ENFORCED_AUTH_PROVIDER_FOR_ADMIN', '')
"""Semicolon-delimited providers that administrators must sign in with.

Empty means administrators may use any credential."""

CONFIRM_EMAIL_ADDRESSES = bool(int(os.environ.get('CONFIRM_EMAIL_ADDRESSES',
                                                  '1')))
"""Send a confirmation email to newly registered accounts."""

CONFIRM_EMAIL_URL = os.environ.get(
    'CONFIRM_EMAIL_URL',
    f'https://{BASE_SERVER}/account/confirm/{{username}}/{{token}}')
CONFIRM_ORGANIZATION_EMAIL_URL = os.environ.get(
    'CONFIRM_ORGANIZATION_EMAIL_URL',
    f'https://{BASE_SERVER}/organization/{{username}}/Confirm?token={{token}}')
"""Links sent in new account emails. Confirmation is handled elsewhere."""

PROFILE_URL = os.environ.get(
    'PROFILE_URL', f'https://{BASE_SERVER}/profiles/{{username}}')
"""Profile link sent with organization membership requests."""

AUTH_PROVIDERS = {
    'AzureActiveDirectoryV2': {
        'enabled': bool(int(os.environ.get('AUTH_AADV2_ENABLED', '1'))),
        'show_on_login': True,
        'account_noun': 'Microsoft account',
        'authorize_url': os.environ.get(
            'AUTH_AADV2_AUTHORIZE_URL',
            'https://login.microsoftonline.com/common/oauth2/v2.0/authorize'),
        'client_id': os.environ.get('AUTH_AADV2_CLIENT_ID', ''),
    },
    'MicrosoftAccount': {
        'enabled': bool(int(os.environ.get('AUTH_MSA_ENABLED', '0'))),
        'show_on_login': True,
        'account_noun': 'Microsoft account',
        'authorize_url': os.environ.get(
            'AUTH_MSA_AUTHORIZE_URL',
            'https://login.live.com/oauth20_authorize.srf'),
        'client_id': os.environ.get('AUTH_MSA_CLIENT_ID', ''),
    },
}
"""Static provider configuration loaded into the provider registry."""


#################### Minor configs ##############################
SECRET_KEY = os.environ.get('SECRET_KEY', secrets.token_urlsafe(16))
"""Sets the `Flask` secret key."""

LOGLEVEL = int(os.environ.get('LOGLEVEL', 20))

VERSION = '0.1'
APP_VERSION = '0.1'
"""The application version."""

APPLICATION_ROOT = os.environ.get('APPLICATION_ROOT', '/')
