"""Transport capabilities consumed by the relay core."""
from __future__ import annotations

from typing import Any
from typing import AsyncIterator
from typing import Callable
from typing import Protocol
from typing import runtime_checkable

FAILED_STATES = frozenset({'closed', 'disconnected', 'failed'})
"""Connection states that the liveness monitor treats as dead."""


@runtime_checkable
class PeerConnection(Protocol):
    """Handle to one peer-to-peer data connection.

    Connections emit four events, registered with
    [`on()`][gamerelay.protocols.PeerConnection.on]:

    * `open`: the connection is ready for data.
    * `data`: a payload (`str` or `bytes`) was received.
    * `close`: the connection closed.
    * `error`: the connection failed; the callback receives a detail object.
    """

    @property
    def peer(self) -> str:
        """Identity of the remote peer."""
        ...

    @property
    def state(self) -> str:
        """Low-level connectivity state (e.g., `'connected'` or `'failed'`)."""
        ...

    def on(self, event: str, f: Callable[..., Any]) -> Any:
        """Register a callback for an event."""
        ...

    def send(self, payload: str) -> None:
        """Queue a payload for sending without waiting for delivery.

        Raises:
            PeerConnectionError: If the connection cannot send.
        """
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


@runtime_checkable
class PeerTransport(Protocol):
    """Source of inbound peer connections."""

    def listen(self) -> AsyncIterator[PeerConnection]:
        """Yield each new inbound connection."""
        ...
