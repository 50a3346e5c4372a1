"""
Distributed store of authenticated gallery sessions.

A session is kept in Redis as a signed JWT under ``session:<id>``. The browser
holds a second JWT, the session cookie, naming the session and repeating its
nonce and expiry, so a cookie cannot be replayed against a re-created session.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import dateutil.parser
import jwt
import redis
from flask import current_app, g
from pytz import UTC

from ..domain import AuthenticatedUser, Session
from .exceptions import InvalidToken, SessionCreationFailed, \
    SessionDeletionFailed, UnknownSession
from .store import current_connection

logger = logging.getLogger(__name__)

NONCE_BYTES = 8


class SessionStore(object):
    """Creates, validates and removes sessions held in Redis."""

    PREFIX = 'session:'

    def __init__(self, r: redis.StrictRedis, secret: str,
                 duration: int = 7200) -> None:
        self.r = r
        self._secret = secret
        self._duration = duration

    def create(self, authenticated: AuthenticatedUser,
               session_id: Optional[str] = None) -> Session:
        """
        Start a session for a user whose credential was just verified.

        Parameters
        ----------
        authenticated : :class:`.AuthenticatedUser`
            The user, and the credential type recorded on the session.
        session_id : str
            Generated when not given.

        Returns
        -------
        :class:`.Session`

        Raises
        ------
        :class:`.SessionCreationFailed`
            Raised if the session could not be written to Redis.

        """
        now = datetime.now(tz=UTC)
        session = Session(
            session_id=session_id or uuid.uuid4().hex,
            username=authenticated.user.username,
            start_time=now,
            end_time=now + timedelta(seconds=self._duration),
            credential_type=authenticated.credential_used.type,
            nonce=secrets.token_hex(NONCE_BYTES)
        )
        try:
            self.r.set(self.PREFIX + session.session_id,
                       self._encode(session), ex=self._duration)
        except redis.exceptions.ConnectionError as e:
            raise SessionCreationFailed(f'Redis unavailable: {e}') from e
        except Exception as e:
            raise SessionCreationFailed(f'Could not store session: {e}') \
                from e
        logger.debug('Started session %s for %s', session.session_id,
                     session.username)
        return session

    def generate_cookie(self, session: Session) -> str:
        """Sign the cookie that refers the browser to ``session``."""
        return self._sign({
            'session_id': session.session_id,
            'username': session.username,
            'nonce': session.nonce,
            'expires': session.end_time.isoformat()  # type: ignore
        })

    def load(self, cookie: str) -> Session:
        """
        Get the session a cookie refers to.

        Raises
        ------
        :class:`.InvalidToken`
            The cookie is malformed, expired, or does not match the session.
        :class:`.UnknownSession`
            The session is gone from the store.

        """
        claims = self._verify(cookie)
        try:
            expires = dateutil.parser.parse(claims['expires'])
            session_id = claims['session_id']
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidToken('Session cookie is missing claims') from e
        if expires <= datetime.now(tz=UTC):
            raise InvalidToken('Session cookie has expired')

        session = self.load_by_id(session_id)
        if session.expired:
            raise InvalidToken('Session has expired')
        if claims.get('nonce') != session.nonce \
                or claims.get('username') != session.username:
            logger.warning('Session cookie for %s does not match its'
                           ' session', session_id)
            raise InvalidToken('Session cookie does not match the session')
        return session

    def load_by_id(self, session_id: str) -> Session:
        """Get a session by its id."""
        token = self.r.get(self.PREFIX + session_id)
        if not token:
            raise UnknownSession(f'No session {session_id}')
        return self._decode(token)

    def delete(self, cookie: str) -> None:
        """End the session a cookie refers to."""
        session_id = self._verify(cookie).get('session_id')
        if not session_id:
            raise InvalidToken('Session cookie does not name a session')
        self.delete_by_id(session_id)

    def delete_by_id(self, session_id: str) -> None:
        """End a session by its id."""
        try:
            self.r.delete(self.PREFIX + session_id)
        except redis.exceptions.ConnectionError as e:
            raise SessionDeletionFailed(f'Redis unavailable: {e}') from e
        except Exception as e:
            raise SessionDeletionFailed(f'Could not delete session: {e}') \
                from e
        logger.debug('Ended session %s', session_id)

    def _encode(self, session: Session) -> str:
        return self._sign({
            'session_id': session.session_id,
            'username': session.username,
            'start_time': session.start_time.isoformat(),
            'end_time': session.end_time.isoformat(),  # type: ignore
            'credential_type': session.credential_type,
            'nonce': session.nonce
        })

    def _decode(self, token: bytes) -> Session:
        claims = self._verify(token)
        return Session(
            session_id=claims['session_id'],
            username=claims['username'],
            start_time=dateutil.parser.parse(claims['start_time']),
            end_time=dateutil.parser.parse(claims['end_time']),
            credential_type=claims.get('credential_type'),
            nonce=claims.get('nonce')
        )

    def _sign(self, claims: Dict[str, Any]) -> str:
        return jwt.encode(claims, self._secret, algorithm='HS256')

    def _verify(self, token: Any) -> Dict[str, Any]:
        try:
            return dict(jwt.decode(token, self._secret,
                                   algorithms=['HS256']))
        except jwt.exceptions.InvalidTokenError as e:
            raise InvalidToken('Token is malformed or forged') from e


def init_app(app: object) -> None:
    """Default the session settings of an application."""
    config = app.config  # type: ignore
    config.setdefault('JWT_SECRET', 'foosecret')
    config.setdefault('SESSION_DURATION', '7200')


def current_session() -> SessionStore:
    """Get/create the :class:`.SessionStore` for this context."""
    if 'sessions' not in g:
        g.sessions = SessionStore(
            current_connection(),
            current_app.config['JWT_SECRET'],
            int(current_app.config.get('SESSION_DURATION', '7200'))
        )
    return g.sessions  # type: ignore
