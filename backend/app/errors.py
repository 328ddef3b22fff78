"""Error taxonomy for the realtime chat core.

Only ``Unauthorized`` is ever visible to a client (as a rejected handshake).
Every other error is raised inside an event handler and absorbed at the
Session Manager's dispatch boundary, so the originating client observes
nothing unless diagnostics are enabled in the config.
"""


class ChatError(Exception):
    """Base class for all chat core errors."""

    reason = "error"


class Unauthorized(ChatError):
    """Missing, malformed, badly signed or expired identity token."""

    reason = "unauthorized"


class EventValidationError(ChatError):
    """Inbound event payload has the wrong shape."""

    reason = "invalid_event"


class AuthorizationDenied(ChatError):
    """Authenticated user is not a member of the target room."""

    reason = "not_allowed"


class RateLimited(ChatError):
    """Send rejected by the per-(user, room) sliding window."""

    reason = "rate_limited"


class PersistenceFailure(ChatError):
    """The store failed to persist or read a record."""

    reason = "persistence_failure"
