"""
Registry of external authentication providers.

The registry is populated once, when the application is created, from the
``AUTH_PROVIDERS`` setting. Each provider is described by a capability record
telling whether it is enabled, whether it is offered on the sign-in page, and
how to build the URL that challenges the user to authenticate with it.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, \
    NamedTuple, Optional
from urllib.parse import urlencode

from flask import current_app

from ..domain import IdentityAssertion
from ..identity import IdentityInformation, identity_from_credential

logger = logging.getLogger(__name__)

EXTERNAL_AUTHENTICATION_PRIORITY = ('AzureActiveDirectoryV2',
                                    'MicrosoftAccount')
"""Preferred providers for linking, most preferred first."""


class Provider(NamedTuple):
    """Capabilities of an external authentication provider."""

    name: str
    enabled: bool
    show_on_login: bool
    build_challenge: Callable[[str], str]
    """Builds the provider URL for a challenge returning to the given URL."""

    account_noun: str = 'account'
    identity_information: Callable[[IdentityAssertion], IdentityInformation] \
        = identity_from_credential


class UnknownProvider(KeyError):
    """No enabled provider has this name."""


class ProviderRegistry(object):
    """Lookup of :class:`.Provider` records by case-insensitive name."""

    def __init__(self, providers: Iterable[Provider]) -> None:
        self._providers: Dict[str, Provider] = {
            provider.name.lower(): provider for provider in providers
        }

    def get(self, name: Optional[str]) -> Optional[Provider]:
        """Get a provider by name."""
        if not name:
            return None
        return self._providers.get(name.lower())

    def login_providers(self) -> List[Provider]:
        """Providers that are enabled and offered on the sign-in page."""
        return [p for p in self._providers.values()
                if p.enabled and p.show_on_login]

    def external_provider(self) -> Optional[str]:
        """Select the provider used to link or change external credentials."""
        names = {p.name.lower() for p in self.login_providers()}
        return next((name for name in EXTERNAL_AUTHENTICATION_PRIORITY
                     if name.lower() in names), None)

    def challenge(self, name: str, return_url: str) -> str:
        """
        Build the URL that challenges the user with provider ``name``.

        Raises
        ------
        :class:`UnknownProvider`
            Raised if the provider is not registered or is disabled.

        """
        provider = self.get(name)
        if provider is None or not provider.enabled:
            raise UnknownProvider(name)
        logger.debug('Challenge %s, returning to %s', provider.name,
                     return_url)
        return provider.build_challenge(return_url)


def _authorize_url_builder(authorize_url: str,
                           client_id: str) -> Callable[[str], str]:
    def build_challenge(return_url: str) -> str:
        query = urlencode({
            'client_id': client_id,
            'response_type': 'code',
            'scope': 'openid profile email',
            'redirect_uri': return_url,
        })
        return f'{authorize_url}?{query}'
    return build_challenge


def from_config(providers: Mapping[str, Mapping[str, Any]]) \
        -> ProviderRegistry:
    """Create a registry from static provider configuration."""
    return ProviderRegistry([
        Provider(
            name=name,
            enabled=bool(conf.get('enabled', False)),
            show_on_login=bool(conf.get('show_on_login', True)),
            account_noun=conf.get('account_noun', 'account'),
            build_challenge=_authorize_url_builder(conf['authorize_url'],
                                                   conf.get('client_id', ''))
        )
        for name, conf in providers.items()
    ])


def init_app(app: object) -> None:
    """Populate the provider registry of an application."""
    config = app.config  # type: ignore
    app.extensions['gallery.providers'] = \
        from_config(config.get('AUTH_PROVIDERS', {}))  # type: ignore


def current_providers() -> ProviderRegistry:
    """Get the provider registry of the current application."""
    registry: ProviderRegistry = current_app.extensions['gallery.providers']
    return registry
