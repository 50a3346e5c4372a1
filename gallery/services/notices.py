"""
One-shot notices shown after a redirect.

A controller that redirects may leave messages for the next page. They are
kept in Redis under the id carried by the notice cookie, survive for a short
time, and are removed the first time they are read.
"""

import logging
import uuid
from typing import Dict, Mapping, Optional

import redis
from flask import current_app, g

from .store import current_connection

logger = logging.getLogger(__name__)

MESSAGE = 'message'
ERROR_MESSAGE = 'error_message'
WARNING_MESSAGE = 'warning_message'


class NoticeStore(object):
    """Key-value store of notices scoped to one redirect cycle."""

    PREFIX = 'notices:'

    def __init__(self, r: redis.StrictRedis, duration: int = 120) -> None:
        self.r = r
        self._duration = duration

    def put(self, notices: Mapping[str, str],
            notice_id: Optional[str] = None) -> str:
        """Keep ``notices`` for the next request; returns the notice id."""
        notice_id = notice_id or uuid.uuid4().hex
        key = self.PREFIX + notice_id
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(key, mapping=dict(notices))
        pipe.expire(key, self._duration)
        pipe.execute()
        return notice_id

    def pop(self, notice_id: Optional[str]) -> Dict[str, str]:
        """Read the notices left under ``notice_id`` and discard them."""
        if not notice_id:
            return {}
        key = self.PREFIX + notice_id
        pipe = self.r.pipeline(transaction=True)
        pipe.hgetall(key)
        pipe.delete(key)
        data, _ = pipe.execute()
        return {k.decode('utf-8'): v.decode('utf-8') for k, v in data.items()}


def init_app(app: object) -> None:
    """Set default configuration parameters for an application instance."""
    config = app.config  # type: ignore
    config.setdefault('NOTICE_COOKIE_NAME', 'GALLERY_NOTICES')
    config.setdefault('NOTICE_DURATION', '120')


def current_notices() -> NoticeStore:
    """Get/create the :class:`.NoticeStore` for this context."""
    if 'notices' not in g:
        g.notices = NoticeStore(
            current_connection(),
            int(current_app.config.get('NOTICE_DURATION', '120'))
        )
    return g.notices  # type: ignore
