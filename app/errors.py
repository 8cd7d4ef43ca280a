"""Exception hierarchy shared by the storage, service and HTTP layers.

Every error carries the HTTP status it maps to so route handlers never have to
translate domain failures by hand.  The Flask error handler in
``cravegames_web.py`` renders them as ``{"error": message}``.
"""


class CraveGamesError(Exception):
    """Base class for all expected failures."""

    status_code = 500

    def __init__(self, message: str = 'Internal server error') -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CraveGamesError):
    """Malformed or out-of-range input."""
    status_code = 400


class AuthenticationError(CraveGamesError):
    """Missing or invalid session / credentials."""
    status_code = 401


class AuthorizationError(CraveGamesError):
    """Authenticated, but not allowed to do this."""
    status_code = 403


class NotFoundError(CraveGamesError):
    """A referenced entity does not exist."""
    status_code = 404


class ConflictError(CraveGamesError):
    """The request clashes with the current state of the store."""
    status_code = 409


class RateLimitedError(CraveGamesError):
    status_code = 429


class StorageError(CraveGamesError):
    """A backend write failed.

    Distinct from "not found": reads of absent entities return ``None``.  The
    message is internal and is never shown to API callers.
    """
    status_code = 500
