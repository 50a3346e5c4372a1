"""
Package gallery accounts service.

The accounts service is a Flask application that provides the user interfaces
for signing in to the package gallery, registering new accounts, linking
external (Microsoft) accounts to gallery accounts, and managing organizations
and their members. It also lists the packages owned by an account.

Account storage, credential verification, email delivery and certificate
handling are provided by external services that implement the interfaces in
:mod:`gallery.services`, and are passed to
:func:`gallery.factory.create_web_app`.

Sessions
--------
When a user signs in, they are issued a session cookie referencing a session
in Redis. External identities returned by a provider wait in the pending login
store, also in Redis, until the user links them to an account or registers
with them. Notices shown after a redirect are kept in Redis for one request.
"""
