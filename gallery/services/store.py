"""
Connection to the Redis key-value store.

The StrictRedis instance is thread safe and connections are attached at the
time a command is executed, so a single client is shared by the whole
application.
"""

import logging
from typing import Any, Mapping

import fakeredis
import redis
from flask import current_app

logger = logging.getLogger(__name__)


def new_connection(config: Mapping[str, Any]) -> redis.StrictRedis:
    """Open a Redis client, or a fake one when ``REDIS_FAKE`` is set."""
    if config.get('REDIS_FAKE'):
        logger.debug('Using FakeRedis')
        return fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())
    host = config.get('REDIS_HOST', 'localhost')
    port = int(config.get('REDIS_PORT', '6379'))
    db = int(config.get('REDIS_DATABASE', '0'))
    logger.debug('New Redis connection at %s, port %s', host, port)
    return redis.StrictRedis(host=host, port=port, db=db,
                             password=config.get('REDIS_TOKEN'))


def init_app(app: object) -> None:
    """Set default configuration parameters for an application instance."""
    config = app.config  # type: ignore
    config.setdefault('REDIS_HOST', 'localhost')
    config.setdefault('REDIS_PORT', '6379')
    config.setdefault('REDIS_DATABASE', '0')
    config.setdefault('REDIS_TOKEN', None)
    config.setdefault('REDIS_FAKE', False)


def current_connection() -> redis.StrictRedis:
    """Get (or open) the Redis client of the current application."""
    if 'gallery.redis' not in current_app.extensions:
        current_app.extensions['gallery.redis'] = \
            new_connection(current_app.config)
    r: redis.StrictRedis = current_app.extensions['gallery.redis']
    return r
