"""Return URL handling."""
import re
from typing import Optional

from flask import current_app

MAX_RETURN_URL_LENGTH = 300


def good_next_page(return_url: Optional[str]) -> str:
    """Get ``return_url`` if it is safe to redirect to.

    Relative URLs and URLs on the base server are followed; anything else,
    including a missing URL, goes to ``DEFAULT_LOGIN_REDIRECT_URL``.
    """
    config = current_app.config
    default: str = config['DEFAULT_LOGIN_REDIRECT_URL']
    if not return_url or len(return_url) >= MAX_RETURN_URL_LENGTH:
        return default
    if return_url == default \
            or re.match(config['LOGIN_REDIRECT_REGEX'], return_url):
        return return_url
    return default
