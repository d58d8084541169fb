"""Message types for signaling client and server communication."""
from __future__ import annotations

import dataclasses
import enum
import json
import uuid
from typing import Any
from typing import Literal


class SignalingMessageType(enum.Enum):
    """Types of messages supported."""

    response = 'SignalingResponse'
    """Server reply to a registration or failed request."""
    registration = 'SignalingRegistration'
    """Registration request sent by a peer."""
    peer_offer = 'PeerOffer'
    """Session description forwarded between peers."""


@dataclasses.dataclass
class SignalingMessage:
    """Base message."""

    pass


@dataclasses.dataclass
class SignalingRegistration(SignalingMessage):
    """Register with the signaling server as a peer.

    Attributes:
        name: Name of the peer. The relay uses this as the player identity.
        uuid: UUID of the peer.
    """

    name: str
    uuid: uuid.UUID
    message_type: str = SignalingMessageType.registration.name


@dataclasses.dataclass
class SignalingResponse(SignalingMessage):
    """Message returned by the signaling server on success or error.

    Attributes:
        success: If the request was successful.
        message: Message from server.
        error: If `message` is an error message.
    """

    success: bool = True
    message: str | None = None
    error: bool = False
    message_type: str = SignalingMessageType.response.name


@dataclasses.dataclass
class PeerOffer(SignalingMessage):
    """Session description sent from one peer to another.

    Attributes:
        source_uuid: UUID of sending peer.
        source_name: Name of sending peer.
        peer_uuid: UUID of destination peer.
        description_type: One of `#!python 'answer'` or `#!python 'offer'`.
        description: Session description protocol message.
        error: Error string if the server could not forward the message.
    """

    source_uuid: uuid.UUID
    source_name: str
    peer_uuid: uuid.UUID
    description_type: Literal['answer', 'offer']
    description: str
    error: str | None = None
    message_type: str = SignalingMessageType.peer_offer.name


_MESSAGE_TYPES: dict[str, type[SignalingMessage]] = {
    SignalingMessageType.response.name: SignalingResponse,
    SignalingMessageType.registration.name: SignalingRegistration,
    SignalingMessageType.peer_offer.name: PeerOffer,
}


class SignalingMessageError(Exception):
    """Base exception type for signaling messages."""

    pass


class SignalingMessageDecodeError(SignalingMessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class SignalingMessageEncodeError(SignalingMessageError):
    """Exception raised when a message cannot be encoded."""

    pass


def _uuids_to_str(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: str(value) if isinstance(value, uuid.UUID) else value
        for key, value in data.items()
    }


def _str_to_uuids(data: dict[str, Any]) -> dict[str, Any]:
    data = data.copy()
    for key in data:
        if key == 'uuid' or key.endswith('_uuid'):
            try:
                data[key] = uuid.UUID(data[key])
            except (AttributeError, TypeError, ValueError) as e:
                raise SignalingMessageDecodeError(
                    f'Failed to convert key {key} to UUID.',
                ) from e
    return data


_STRING_FIELDS = frozenset(('name', 'source_name', 'description'))
_DESCRIPTION_TYPES = frozenset(('answer', 'offer'))


def _check_field_types(message: SignalingMessage) -> None:
    for field in dataclasses.fields(message):
        value = getattr(message, field.name)
        if field.name in _STRING_FIELDS and not isinstance(value, str):
            raise SignalingMessageDecodeError(
                f'Field {field.name} must be a string but got '
                f'{type(value).__name__}.',
            )
    description_type = getattr(message, 'description_type', None)
    if (
        isinstance(message, PeerOffer)
        and description_type not in _DESCRIPTION_TYPES
    ):
        raise SignalingMessageDecodeError(
            f'Unknown description type: {description_type!r}.',
        )


def decode_signaling_message(message: str) -> SignalingMessage:
    """Decode JSON string into the correct signaling message type.

    Raises:
        SignalingMessageDecodeError: If the message cannot be decoded.
    """
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, RecursionError) as e:
        raise SignalingMessageDecodeError(
            'Failed to load string as JSON.',
        ) from e

    if not isinstance(data, dict):
        raise SignalingMessageDecodeError('Message is not a JSON object.')

    message_type_name = data.pop('message_type', None)
    if not isinstance(message_type_name, str):
        raise SignalingMessageDecodeError(
            'Message does not contain a message_type key.',
        )

    message_type = _MESSAGE_TYPES.get(message_type_name)
    if message_type is None:
        raise SignalingMessageDecodeError(
            f'The message is of an unknown message type: {message_type_name}.',
        )

    try:
        decoded = message_type(**_str_to_uuids(data))
    except TypeError as e:
        raise SignalingMessageDecodeError(
            f'Failed to convert message to {message_type.__name__}: {e}',
        ) from e

    _check_field_types(decoded)
    return decoded


def encode_signaling_message(message: SignalingMessage) -> str:
    """Encode message as JSON string.

    Raises:
        SignalingMessageEncodeError: If the message cannot be JSON encoded.
    """
    if not isinstance(message, SignalingMessage):
        raise SignalingMessageEncodeError(
            f'Message is not an instance of {SignalingMessage.__name__}. '
            f'Got {type(message).__name__}.',
        )

    data = _uuids_to_str(dataclasses.asdict(message))
    try:
        return json.dumps(data)
    except TypeError as e:
        raise SignalingMessageEncodeError('Error encoding message.') from e
