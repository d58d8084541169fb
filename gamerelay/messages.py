"""Game messages exchanged between clients and the relay.

Every payload on a game data channel is a JSON object of the form
`#!json {"eventName": "<name>", "data": <value>}`. The value is
event specific and may itself be a JSON-encoded string (clients send
`JSON.stringify`-ed state) or a raw JSON value.
"""
from __future__ import annotations

import dataclasses
import enum
import json
import math
from typing import Any
from typing import TypedDict


class EventName(enum.Enum):
    """Event names understood by the relay."""

    update = 'update'
    """Player state update (inbound) or roster snapshot (outbound)."""
    flip = 'flip'
    """Facing direction change."""
    disconnected = 'disconnected'
    """A player left the game."""


class StateUpdate(TypedDict):
    """Fields carried by an inbound `update` event."""

    x: float
    y: float
    animation: int


class RosterEntry(TypedDict):
    """State of one remote player as sent to clients."""

    x: float
    y: float
    animation: int
    flip: bool | int
    name: str


@dataclasses.dataclass
class GameMessage:
    """Decoded game message.

    Attributes:
        event_name: Event tag. Unknown tags are kept so callers can decide to
            ignore them.
        data: Event payload, as found on the wire.
    """

    event_name: str
    data: Any = None


class MessageError(Exception):
    """Base exception type for game messages."""

    pass


class MessageDecodeError(MessageError):
    """Exception raised when a message or its payload cannot be decoded."""

    pass


class MessageEncodeError(MessageError):
    """Exception raised when a message cannot be encoded."""

    pass


def decode_game_message(message: str | bytes) -> GameMessage:
    """Decode a raw data channel payload.

    Args:
        message: JSON text, as `str` or UTF-8 `bytes`.

    Returns:
        Parsed message.

    Raises:
        MessageDecodeError: If the payload is not a JSON object with a
            string `eventName`.
    """
    if isinstance(message, bytes):
        try:
            message = message.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MessageDecodeError('Message is not valid UTF-8.') from e

    try:
        data = json.loads(message)
    except (json.JSONDecodeError, RecursionError) as e:
        raise MessageDecodeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise MessageDecodeError(
            f'Expected a JSON object but got {type(data).__name__}.',
        )

    event_name = data.get('eventName')
    if not isinstance(event_name, str):
        raise MessageDecodeError('Message does not contain an eventName.')

    return GameMessage(event_name=event_name, data=data.get('data'))


def encode_game_message(message: GameMessage) -> str:
    """Encode a message as JSON text.

    Raises:
        MessageEncodeError: If the message data cannot be JSON encoded.
    """
    if not isinstance(message, GameMessage):
        raise MessageEncodeError(
            f'Message is not an instance of {GameMessage.__name__}. '
            f'Got {type(message).__name__}.',
        )
    try:
        return json.dumps({'eventName': message.event_name, 'data': message.data})
    except (TypeError, ValueError) as e:
        raise MessageEncodeError('Error encoding message.') from e


def _load_payload(data: Any) -> Any:
    if isinstance(data, (str, bytes)):
        try:
            return json.loads(data)
        except (
            json.JSONDecodeError,
            RecursionError,
            UnicodeDecodeError,
        ) as e:
            raise MessageDecodeError('Payload is not valid JSON.') from e
    return data


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _number_or_zero(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    return value if _is_number(value) else 0


def parse_update(data: Any) -> StateUpdate:
    """Parse the payload of an `update` event.

    Missing or non-numeric fields default to `0`. Values that are present
    and numeric are kept as sent, including a deliberate `0`.

    Args:
        data: JSON-encoded string or already decoded object.

    Raises:
        MessageDecodeError: If the payload is not a JSON object.
    """
    payload = _load_payload(data)
    if not isinstance(payload, dict):
        raise MessageDecodeError(
            'Update payload must be an object but got '
            f'{type(payload).__name__}.',
        )
    return StateUpdate(
        x=_number_or_zero(payload, 'x'),
        y=_number_or_zero(payload, 'y'),
        animation=int(_number_or_zero(payload, 'animation')),
    )


def parse_flip(data: Any) -> bool | int | float:
    """Parse the payload of a `flip` event.

    Raises:
        MessageDecodeError: If the payload is not a boolean or a number.
    """
    payload = _load_payload(data)
    if isinstance(payload, bool) or _is_number(payload):
        return payload
    raise MessageDecodeError(
        f'Flip payload must be a boolean or number, got {payload!r}.',
    )


def roster_message(roster: list[RosterEntry]) -> GameMessage:
    """Create the outbound `update` message carrying a roster."""
    return GameMessage(EventName.update.value, json.dumps(roster))


def disconnected_message(identity: str) -> GameMessage:
    """Create the outbound `disconnected` message for a departed player."""
    return GameMessage(EventName.disconnected.value, identity)
