"""Tests for :mod:`gallery.next_page`."""

from unittest import TestCase

from gallery.factory import create_web_app
from gallery.next_page import good_next_page


class TestGoodNextPage(TestCase):
    """Only local return URLs are followed."""

    def setUp(self):
        self.app = create_web_app()
        self.default = self.app.config['DEFAULT_LOGIN_REDIRECT_URL']

    def test_relative(self):
        with self.app.app_context():
            self.assertEqual(good_next_page('/packages/Acme.Tools'),
                             '/packages/Acme.Tools')

    def test_base_server(self):
        url = f"https://{self.app.config['BASE_SERVER']}/account"
        with self.app.app_context():
            self.assertEqual(good_next_page(url), url)

    def test_refused(self):
        with self.app.app_context():
            for url in (None, '', 'https://evil.com/', '//evil.com',
                        '/\\evil.com', '/' + 'a' * 300):
                self.assertEqual(good_next_page(url), self.default)
