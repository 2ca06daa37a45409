"""
Network Error Types — Structured exception hierarchy.

Lets callers distinguish retryable transport failures (server down,
timeout) from ones that need a config change or a smaller payload, so the
retry loop only retries what makes sense and the host can tell the user
what actually went wrong.
"""


class ForgeError(Exception):
    """Base class for all session and transport errors."""
    pass


class TransportError(ForgeError):
    """A read, write or subscription on the transport failed."""
    pass


class TransportConnectionError(TransportError):
    """Database is unreachable or returned a server error (5xx). Retryable."""
    pass


class TransportTimeoutError(TransportError):
    """Request timed out. Retryable."""
    pass


class TransportAuthError(TransportError):
    """Auth token rejected (401/403). NOT retryable without config change."""
    pass


class PayloadTooLargeError(TransportError):
    """A write exceeded the per-write size ceiling (413). NOT retryable."""
    pass


class SessionNotFoundError(ForgeError):
    """No session exists under the requested id."""
    pass


class JoinTimeoutError(ForgeError):
    """No sync arrived before the join deadline.

    Reported through ``PeerSession.status`` and ``PeerSession.error``; the
    join flow never raises it to the caller.
    """
    pass


RETRYABLE_ERRORS = (TransportConnectionError, TransportTimeoutError)
