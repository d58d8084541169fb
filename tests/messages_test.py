from __future__ import annotations

import json
import math

import pytest

from gamerelay.messages import decode_game_message
from gamerelay.messages import disconnected_message
from gamerelay.messages import encode_game_message
from gamerelay.messages import EventName
from gamerelay.messages import GameMessage
from gamerelay.messages import MessageDecodeError
from gamerelay.messages import MessageEncodeError
from gamerelay.messages import parse_flip
from gamerelay.messages import parse_update
from gamerelay.messages import roster_message


@pytest.mark.parametrize(
    'payload',
    (
        '{"eventName": "update", "data": "{}"}',
        b'{"eventName": "update", "data": "{}"}',
    ),
)
def test_decode_game_message(payload: str | bytes) -> None:
    message = decode_game_message(payload)
    assert message == GameMessage('update', '{}')


def test_decode_game_message_without_data() -> None:
    message = decode_game_message('{"eventName": "ping"}')
    assert message.event_name == 'ping'
    assert message.data is None


@pytest.mark.parametrize(
    'payload',
    (
        '',
        'not json',
        b'\xff',
        '"update"',
        '[{"eventName": "update"}]',
        '{"data": {}}',
        '{"eventName": null}',
        '{"eventName": 42}',
        '[' * 200000,
        b'{"eventName": ' * 200000,
    ),
)
def test_decode_game_message_errors(payload: str | bytes) -> None:
    with pytest.raises(MessageDecodeError):
        decode_game_message(payload)


def test_encode_game_message() -> None:
    message = GameMessage(EventName.disconnected.value, 'alice')
    encoded = encode_game_message(message)
    assert json.loads(encoded) == {'eventName': 'disconnected', 'data': 'alice'}
    assert decode_game_message(encoded) == message


def test_encode_game_message_errors() -> None:
    with pytest.raises(MessageEncodeError, match='instance'):
        encode_game_message('update')  # type: ignore[arg-type]

    with pytest.raises(MessageEncodeError):
        encode_game_message(GameMessage('update', object()))


def test_parse_update_from_string() -> None:
    update = parse_update('{"x": 10, "y": 20.5, "animation": 3}')
    assert update == {'x': 10, 'y': 20.5, 'animation': 3}


def test_parse_update_from_object() -> None:
    update = parse_update({'x': -1, 'y': 0, 'animation': 1, 'extra': 'ok'})
    assert update == {'x': -1, 'y': 0, 'animation': 1}


def test_parse_update_defaults() -> None:
    assert parse_update('{}') == {'x': 0, 'y': 0, 'animation': 0}


@pytest.mark.parametrize(
    'value',
    ('abc', '1', None, True, False, [1], {'v': 1}, math.inf, -math.inf),
)
def test_parse_update_non_numeric_is_zero(value) -> None:
    update = parse_update({'x': value, 'y': 4, 'animation': 1})
    assert update['x'] == 0
    assert update['y'] == 4


def test_parse_update_nan_is_zero() -> None:
    update = parse_update('{"x": NaN, "y": 1, "animation": 0}')
    assert update['x'] == 0


def test_parse_update_keeps_deliberate_zero() -> None:
    update = parse_update({'x': 0, 'y': 0.0, 'animation': 0})
    assert update == {'x': 0, 'y': 0.0, 'animation': 0}


def test_parse_update_animation_is_integer() -> None:
    update = parse_update({'x': 1, 'y': 1, 'animation': 2.9})
    assert update['animation'] == 2
    assert isinstance(update['animation'], int)


@pytest.mark.parametrize(
    'data',
    ('not json', '[1, 2]', '"x"', None, 5, '[' * 200000),
)
def test_parse_update_errors(data) -> None:
    with pytest.raises(MessageDecodeError):
        parse_update(data)


@pytest.mark.parametrize(
    ('data', 'expected'),
    ((True, True), (False, False), ('true', True), (1, 1), ('-1', -1)),
)
def test_parse_flip(data, expected) -> None:
    assert parse_flip(data) == expected


@pytest.mark.parametrize(
    'data',
    (None, 'left', '"left"', '{}', [True], '{"a": ' * 200000),
)
def test_parse_flip_errors(data) -> None:
    with pytest.raises(MessageDecodeError):
        parse_flip(data)


def test_roster_message() -> None:
    roster = [{'x': 1, 'y': 2, 'animation': 0, 'flip': False, 'name': 'A'}]
    message = roster_message(roster)  # type: ignore[arg-type]

    assert message.event_name == 'update'
    assert isinstance(message.data, str)
    assert json.loads(message.data) == roster


def test_disconnected_message() -> None:
    message = disconnected_message('bob')
    assert message == GameMessage('disconnected', 'bob')
