"""
Domain errors raised by the storefront core.

Each error carries the HTTP status it maps to; ``main.py`` turns them into
JSON responses with a single exception handler.
"""
from typing import Optional


class StorefrontError(Exception):
    status_code = 400

    def __init__(self, message: str, redirect: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.redirect = redirect


class NotAuthenticated(StorefrontError):
    status_code = 401


class Forbidden(StorefrontError):
    status_code = 403


class NotFound(StorefrontError):
    status_code = 404


class PreconditionFailed(StorefrontError):
    status_code = 400


class OrderNotCancellable(StorefrontError):
    """The conditional cancel matched no row: the order left ``pending`` first."""
    status_code = 409


class InvalidStatusTransition(StorefrontError):
    status_code = 409


class AuthorizationTimeout(StorefrontError):
    status_code = 503
