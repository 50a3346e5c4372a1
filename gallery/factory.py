"""Application factory for the gallery accounts app."""

from typing import Optional

from flask import Flask

from . import app_logging
from .routes import ui
from .services import Services, notices, pending_logins, providers, \
    sessions, store
from .services import init_app as services_init_app


def create_web_app(services: Optional[Services] = None) -> Flask:
    """
    Initialize and configure the accounts application.

    Parameters
    ----------
    services : :class:`.Services`
        Implementations of the account, message, certificate and package
        services. Routes that need them fail until they are provided.

    """
    app = Flask('gallery')
    app.config.from_pyfile('config.py')
    app_logging.setup_logger(app.config['LOGLEVEL'])

    # Don't set SERVER_NAME, it switches flask blueprints to be
    # subdomain aware.
    app.config['SERVER_NAME'] = None

    store.init_app(app)
    sessions.init_app(app)
    pending_logins.init_app(app)
    notices.init_app(app)
    providers.init_app(app)
    if services is not None:
        services_init_app(app, services)

    app.register_blueprint(ui.blueprint)
    return app
