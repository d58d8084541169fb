"""Exception types raised by signaling clients and servers."""
from __future__ import annotations


class SignalingClientError(Exception):
    """Base exception type for exceptions raised by signaling clients."""

    pass


class SignalingNotConnectedError(SignalingClientError):
    """Exception raised if a client is not connected to a signaling server."""

    pass


class SignalingRegistrationError(SignalingClientError):
    """Exception raised by client if unable to register with the server."""

    pass


class SignalingServerError(Exception):
    """Base exception type for exceptions raised by the signaling server."""

    pass


class ForbiddenError(SignalingServerError):
    """Client attempted an action it is not allowed to perform."""

    pass
