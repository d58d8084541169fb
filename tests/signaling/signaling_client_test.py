from __future__ import annotations

import asyncio
import ssl
import uuid
from typing import AsyncGenerator
from typing import Callable
from unittest import mock
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import websockets.exceptions
from websockets.asyncio.server import serve
from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

from gamerelay.signaling.client import SignalingClient
from gamerelay.signaling.exceptions import SignalingNotConnectedError
from gamerelay.signaling.exceptions import SignalingRegistrationError
from gamerelay.signaling.messages import encode_signaling_message
from gamerelay.signaling.messages import PeerOffer
from gamerelay.signaling.messages import SignalingMessageDecodeError
from gamerelay.signaling.messages import SignalingResponse
from testing.signaling_server import SignalingServerInfo
from testing.utils import open_port
from testing.utils import wait_for_condition


def replying_with(reply: str | bytes) -> Callable:
    async def _handler(websocket: ServerConnection) -> None:
        await websocket.recv()
        await websocket.send(reply)
        await websocket.wait_closed()

    return _handler


@pytest_asyncio.fixture()
async def bad_server(request) -> AsyncGenerator[str, None]:
    port = open_port()
    async with serve(replying_with(request.param), 'localhost', port):
        yield f'ws://localhost:{port}'


def test_bad_address() -> None:
    with pytest.raises(ValueError, match='ws://'):
        SignalingClient('http://localhost:8765')


def test_default_name_and_uuid() -> None:
    client = SignalingClient('ws://localhost:8765')
    assert isinstance(client.name, str)
    assert isinstance(client.uuid, uuid.UUID)
    assert client.address == 'ws://localhost:8765'


def test_wss_ssl_context() -> None:
    with mock.patch('ssl.create_default_context') as mock_create:
        SignalingClient('wss://localhost:8765', verify_certificate=False)
        mock_create.assert_called_once()
        context = mock_create.return_value
        assert context.check_hostname is False
        assert context.verify_mode == ssl.CERT_NONE


def test_websocket_before_connect() -> None:
    client = SignalingClient('ws://localhost:8765')
    with pytest.raises(SignalingNotConnectedError):
        _ = client.websocket


@pytest.mark.asyncio()
async def test_connect_and_close(
    signaling_server: SignalingServerInfo,
) -> None:
    client_uuid = uuid.uuid4()
    client = SignalingClient(
        signaling_server.address,
        client_name='alice',
        client_uuid=client_uuid,
    )
    await client.connect()
    # Already connected so a no-op
    await client.connect()

    assert client.websocket.state is State.OPEN
    peers = signaling_server.signaling_server.peers
    peer = peers.get_peer_by_uuid(client_uuid)
    assert peer is not None
    assert peer.name == 'alice'

    await client.close()
    await wait_for_condition(lambda: len(peers) == 0)
    with pytest.raises(SignalingNotConnectedError):
        _ = client.websocket


@pytest.mark.asyncio()
async def test_connect_without_retry_fails() -> None:
    client = SignalingClient(f'ws://localhost:{open_port()}')
    with pytest.raises(OSError):
        await client.connect(retry=False)


@pytest.mark.asyncio()
async def test_connect_retries_with_backoff() -> None:
    client = SignalingClient('ws://localhost:8765', reconnect_task=False)
    client._initial_backoff_seconds = 0.001
    websocket = mock.MagicMock()

    with mock.patch.object(
        client,
        '_register',
        AsyncMock(side_effect=[OSError(), asyncio.TimeoutError(), websocket]),
    ) as mock_register:
        await client.connect()

    assert mock_register.await_count == 3
    assert client._websocket is websocket


@pytest.mark.parametrize(
    'bad_server',
    (
        encode_signaling_message(SignalingResponse(success=False, message='no')),
        encode_signaling_message(
            PeerOffer(
                source_uuid=uuid.uuid4(),
                source_name='x',
                peer_uuid=uuid.uuid4(),
                description_type='offer',
                description='',
            ),
        ),
        'not a message',
        b'bytes',
    ),
    indirect=True,
)
@pytest.mark.asyncio()
async def test_registration_errors(bad_server: str) -> None:
    client = SignalingClient(bad_server, reconnect_task=False, timeout=1)
    with pytest.raises(SignalingRegistrationError):
        await client.connect()


@pytest.mark.asyncio()
async def test_send_and_recv(signaling_server: SignalingServerInfo) -> None:
    async with SignalingClient(
        signaling_server.address,
    ) as alice, SignalingClient(signaling_server.address) as bob:
        offer = PeerOffer(
            source_uuid=alice.uuid,
            source_name=alice.name,
            peer_uuid=bob.uuid,
            description_type='offer',
            description='description',
        )
        await alice.send(offer)
        assert await bob.recv() == offer


@pytest.mark.asyncio()
async def test_send_and_recv_reconnect(
    signaling_server: SignalingServerInfo,
) -> None:
    client = SignalingClient(signaling_server.address, reconnect_task=False)

    # Not connected yet so the client connects itself
    await client.send(
        PeerOffer(
            source_uuid=client.uuid,
            source_name=client.name,
            peer_uuid=client.uuid,
            description_type='offer',
            description='loopback',
        ),
    )
    message = await client.recv()
    assert isinstance(message, PeerOffer)
    assert message.description == 'loopback'

    await client.close()


@pytest.mark.asyncio()
async def test_recv_bytes(signaling_server: SignalingServerInfo) -> None:
    async with SignalingClient(signaling_server.address) as client:
        with mock.patch.object(
            client.websocket,
            'recv',
            AsyncMock(return_value=b'bytes'),
        ):
            with pytest.raises(SignalingMessageDecodeError):
                await client.recv()


@pytest.mark.asyncio()
async def test_reconnect_on_close(
    signaling_server: SignalingServerInfo,
) -> None:
    client = SignalingClient(signaling_server.address)
    await client.connect()
    first = client.websocket
    client._initial_backoff_seconds = 0.001

    peers = signaling_server.signaling_server.peers
    peer = peers.get_peer_by_uuid(client.uuid)
    assert peer is not None
    await signaling_server.signaling_server.unregister(peer, expected=False)

    def _reconnected() -> bool:
        return (
            client._websocket is not first
            and client._websocket is not None
            and client._websocket.state is State.OPEN
        )

    await wait_for_condition(_reconnected)
    await wait_for_condition(lambda: len(peers) == 1)

    await client.close()


@pytest.mark.asyncio()
async def test_recv_connection_closed(
    signaling_server: SignalingServerInfo,
) -> None:
    client = SignalingClient(signaling_server.address, reconnect_task=False)
    await client.connect()
    task = asyncio.create_task(client.recv())

    peer = signaling_server.signaling_server.peers.get_peer_by_uuid(
        client.uuid,
    )
    assert peer is not None
    await signaling_server.signaling_server.unregister(peer, expected=True)

    with pytest.raises(websockets.exceptions.ConnectionClosed):
        await task

    await client.close()
