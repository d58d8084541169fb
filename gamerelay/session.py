"""Server-side record of one connected player."""
from __future__ import annotations

import asyncio
import dataclasses
import enum

from gamerelay.messages import RosterEntry
from gamerelay.messages import StateUpdate
from gamerelay.protocols import PeerConnection


class Lifecycle(enum.Enum):
    """Lifecycle of a [`Session`][gamerelay.session.Session]."""

    CONNECTING = 'connecting'
    OPEN = 'open'
    CLOSING = 'closing'
    CLOSED = 'closed'


@dataclasses.dataclass
class PlayerState:
    """Last-known game state of a player.

    Attributes:
        x: Horizontal position.
        y: Vertical position.
        animation: Animation code.
        flip: Facing direction.
    """

    x: float = 0
    y: float = 0
    animation: int = 0
    flip: bool | int | float = 0

    def apply(self, update: StateUpdate) -> None:
        """Overwrite position and animation. Facing is left untouched."""
        self.x = update['x']
        self.y = update['y']
        self.animation = update['animation']

    def to_entry(self, name: str) -> RosterEntry:
        """Roster entry describing this state for player `name`."""
        return RosterEntry(
            x=self.x,
            y=self.y,
            animation=self.animation,
            flip=self.flip,
            name=name,
        )


@dataclasses.dataclass(eq=False)
class Session:
    """One connected identity.

    Sessions compare by object identity: two sessions for the same player
    are different sessions, and the relay relies on this to ignore events
    from a session that has been displaced.

    Attributes:
        identity: Stable identity string supplied by the transport.
        connection: Transport handle owned by this session.
        state: Last-known game state.
        lifecycle: Current lifecycle stage.
        monitor: Liveness monitor task while the session is open.
    """

    identity: str
    connection: PeerConnection = dataclasses.field(repr=False)
    state: PlayerState = dataclasses.field(default_factory=PlayerState)
    lifecycle: Lifecycle = Lifecycle.CONNECTING
    monitor: asyncio.Task[None] | None = dataclasses.field(
        default=None,
        repr=False,
    )

    @property
    def is_open(self) -> bool:
        return self.lifecycle is Lifecycle.OPEN
