"""Request controllers for the gallery accounts application."""

from . import authentication, organizations, packages
