"""
Exceptions raised by the scoring and ranking engine.

Each carries a developer-facing message and a short message safe to show
to players. Storage failures are not wrapped: SQLAlchemy errors propagate
as they are.
"""


class GuesserError(Exception):
    """Base exception for the guesser."""
    status_code = 500

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class NotFoundError(GuesserError):
    """Raised when a floor, location or user id is unknown."""
    status_code = 404

    def __init__(self, kind: str, ident=None):
        if ident is None:
            super().__init__(f"No {kind} available", f"No {kind} available.")
        else:
            super().__init__(
                f"{kind} {ident!r} not found",
                f"{kind.capitalize()} not found."
            )
        self.kind = kind
        self.ident = ident


class ForbiddenError(GuesserError):
    """Raised for admin-only listings requested without the admin flag."""
    status_code = 403

    def __init__(self, what: str):
        super().__init__(f"{what} requires admin access", "Forbidden.")


class InvalidInputError(GuesserError):
    """Raised for missing or malformed input (coordinates, ids, totals)."""
    status_code = 400

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid {field}: {reason}",
            f"Invalid {field}."
        )
        self.field = field
        self.reason = reason
