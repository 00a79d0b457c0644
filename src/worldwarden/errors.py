"""
Exceptions raised by the access-control engine.

All three are terminal conditions detected locally; none are retried. The
route layer translates them into transport responses using status_code.
"""


class AccessError(Exception):
    """Base class for errors raised by worldwarden operations."""
    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(AccessError):
    """A resource, or a campaign/character it references, does not exist."""
    status_code = 404
    default_message = "Not found."


class ForbiddenError(AccessError):
    """
    The caller lacks read or write authority.

    Messages stay generic so callers cannot infer grant structure or
    whether a resource exists.
    """
    status_code = 403
    default_message = "Forbidden."


class InvalidRequestError(AccessError):
    """Malformed combination of inputs (visibility/context, cycles, rosters)."""
    status_code = 400
    default_message = "Invalid request."
