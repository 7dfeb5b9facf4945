"""Error taxonomy shared by clients, services and the HTTP layer."""


class BackendError(Exception):
    """A remote call to the backend failed. The message is meant to be shown verbatim."""

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class UniqueViolationError(BackendError):
    """Postgres unique constraint violation (SQLSTATE 23505)."""


class AuthorizationError(BackendError):
    """The caller is not authenticated or not a member of the organization."""


class ValidationError(Exception):
    """Input rejected before any remote call, e.g. a disallowed file type."""


UNIQUE_VIOLATION_CODE = "23505"


def error_message(exc: Exception, fallback: str) -> str:
    """Message to surface to the user for ``exc``, or ``fallback`` if it has none."""
    message = getattr(exc, "message", None) or str(exc)
    return message or fallback
