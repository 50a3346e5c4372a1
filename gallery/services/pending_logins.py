"""
Short-lived store of external identities awaiting a sign-in decision.

When a provider handshake completes, the external identity is kept here and
the browser receives a signed cookie referencing it. The identity can be
consumed once: concurrent attempts to consume it are serialized by Redis, so
only the first one receives it and the others see it as expired.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

import jwt
import redis
from flask import current_app, g
from pytz import UTC

from ..domain import Credential, IdentityAssertion
from .store import current_connection

logger = logging.getLogger(__name__)


class PendingLoginStore(object):
    """Holds :class:`.IdentityAssertion`s under a signed cookie."""

    PREFIX = 'pending-login:'

    def __init__(self, r: redis.StrictRedis, secret: str,
                 duration: int = 300) -> None:
        self.r = r
        self._secret = secret
        self._duration = duration

    def create(self, assertion: IdentityAssertion) -> str:
        """Store an external identity and return the cookie referencing it."""
        pending_id = str(uuid.uuid4())
        self.r.set(self.PREFIX + pending_id, self._encode(assertion),
                   ex=self._duration)
        logger.debug('Stored pending login %s from %s', pending_id,
                     assertion.provider)
        expires = datetime.now(tz=UTC) + timedelta(seconds=self._duration)
        return jwt.encode({'pending_id': pending_id, 'exp': expires},
                          self._secret, algorithm='HS256')

    def peek(self, cookie: Optional[str]) -> Optional[IdentityAssertion]:
        """Read the external identity without consuming it."""
        pending_id = self._unpack_cookie(cookie)
        if pending_id is None:
            return None
        data = self.r.get(self.PREFIX + pending_id)
        return self._decode(data) if data else None

    def consume(self, cookie: Optional[str]) -> Optional[IdentityAssertion]:
        """Read and remove the external identity; ``None`` if already gone."""
        pending_id = self._unpack_cookie(cookie)
        if pending_id is None:
            return None
        pipe = self.r.pipeline(transaction=True)
        pipe.get(self.PREFIX + pending_id)
        pipe.delete(self.PREFIX + pending_id)
        data, deleted = pipe.execute()
        if not data or not deleted:
            logger.debug('Pending login %s was already used', pending_id)
            return None
        return self._decode(data)

    def restore(self, cookie: Optional[str],
                assertion: IdentityAssertion) -> None:
        """Put back a consumed identity, e.g. after a failed registration."""
        pending_id = self._unpack_cookie(cookie)
        if pending_id is None:
            return
        self.r.set(self.PREFIX + pending_id, self._encode(assertion),
                   ex=self._duration, nx=True)

    def _unpack_cookie(self, cookie: Optional[str]) -> Optional[str]:
        if not cookie:
            return None
        try:
            data = jwt.decode(cookie, self._secret, algorithms=['HS256'])
        except jwt.exceptions.ExpiredSignatureError:
            logger.debug('Pending login cookie has expired')
            return None
        except jwt.exceptions.InvalidTokenError:
            logger.warning('Pending login cookie is malformed')
            return None
        pending_id: Optional[str] = data.get('pending_id')
        return pending_id

    def _encode(self, assertion: IdentityAssertion) -> str:
        return json.dumps({
            'provider': assertion.provider,
            'credential': assertion.credential._asdict(),
            'claims': assertion.claims
        })

    def _decode(self, data: bytes) -> IdentityAssertion:
        raw = json.loads(data)
        return IdentityAssertion(
            provider=raw['provider'],
            credential=Credential(**raw['credential']),
            claims=raw.get('claims', {})
        )


def init_app(app: object) -> None:
    """Set default configuration parameters for an application instance."""
    config = app.config  # type: ignore
    config.setdefault('PENDING_LOGIN_COOKIE_NAME', 'GALLERY_EXTERNAL_LOGIN')
    config.setdefault('PENDING_LOGIN_DURATION', '300')


def current_pending_logins() -> PendingLoginStore:
    """Get/create the :class:`.PendingLoginStore` for this context."""
    if 'pending_logins' not in g:
        g.pending_logins = PendingLoginStore(
            current_connection(),
            current_app.config['JWT_SECRET'],
            int(current_app.config.get('PENDING_LOGIN_DURATION', '300'))
        )
    return g.pending_logins  # type: ignore
