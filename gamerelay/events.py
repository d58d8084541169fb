"""Events consumed by the relay dispatcher.

Transport callbacks and timers never touch the registry directly. They post
one of these events and the dispatcher applies them one at a time.
"""
from __future__ import annotations

import dataclasses
from typing import Any
from typing import Union

from gamerelay.session import Session


@dataclasses.dataclass
class SessionAdmitted:
    """A new inbound connection was admitted."""

    session: Session


@dataclasses.dataclass
class SessionOpened:
    """The transport confirmed the connection is ready."""

    session: Session


@dataclasses.dataclass
class DataReceived:
    """A payload arrived on the session's connection."""

    session: Session
    payload: str | bytes


@dataclasses.dataclass
class SessionClosed:
    """The connection closed or was found dead by the liveness monitor."""

    session: Session
    reason: str = 'closed by peer'


@dataclasses.dataclass
class SessionErrored:
    """The transport reported an error on the connection."""

    session: Session
    detail: Any = None


@dataclasses.dataclass
class PlayerDeparted:
    """The departure grace period for an identity elapsed."""

    identity: str


RelayEvent = Union[
    SessionAdmitted,
    SessionOpened,
    DataReceived,
    SessionClosed,
    SessionErrored,
    PlayerDeparted,
]
