"""Failure taxonomy shared by the link services.

Services raise these; ``main.py`` maps them to HTTP responses in one place.
"""


class LinkError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(LinkError):
    status_code = 400


class Conflict(LinkError):
    status_code = 409


class NotFound(LinkError):
    status_code = 404


class Gone(LinkError):
    status_code = 410


class RateLimited(LinkError):
    status_code = 429


class Internal(LinkError):
    status_code = 500


def store_failure(exc: Exception) -> Internal:
    """Internal error for a failed store call, safe to show to callers.

    ``str()`` of a SQLAlchemy error carries the SQL and its bound parameters
    (creator IP, user agent); only the driver's own message is kept.
    """
    orig = getattr(exc, "orig", None)
    if orig is not None:
        return Internal(f"internal error: {orig}")
    return Internal("internal error")
