from __future__ import annotations

import asyncio
import uuid

import pytest

from gamerelay.p2p.connection import PeerChannel
from gamerelay.p2p.exceptions import PeerConnectionError
from gamerelay.p2p.exceptions import PeerConnectionTimeoutError
from gamerelay.signaling.client import SignalingClient
from gamerelay.signaling.messages import PeerOffer
from testing.signaling_server import SignalingServerInfo


def make_offer(**kwargs) -> PeerOffer:
    options = {
        'source_uuid': uuid.uuid4(),
        'source_name': 'alice',
        'peer_uuid': uuid.uuid4(),
        'description_type': 'offer',
        'description': '',
    }
    options.update(kwargs)
    return PeerOffer(**options)


@pytest.mark.timeout(30)
@pytest.mark.asyncio()
async def test_p2p_channel(signaling_server: SignalingServerInfo) -> None:
    client1 = SignalingClient(signaling_server.address, client_name='alice')
    await client1.connect()
    client2 = SignalingClient(signaling_server.address, client_name='relay')
    await client2.connect()

    channel1 = PeerChannel(client1)
    channel2 = PeerChannel(client2)
    opened = asyncio.Event()
    closed = asyncio.Event()
    received: asyncio.Queue[str | bytes] = asyncio.Queue()
    channel2.on('open', opened.set)
    channel2.on('close', closed.set)
    channel2.on('data', received.put_nowait)

    await channel1.send_offer(client2.uuid)
    offer = await client2.recv()
    assert isinstance(offer, PeerOffer)
    assert offer.description_type == 'offer'
    await channel2.handle_signal(offer)
    answer = await client1.recv()
    assert isinstance(answer, PeerOffer)
    assert answer.description_type == 'answer'
    await channel1.handle_signal(answer)

    await channel1.ready(10)
    await channel2.ready(10)
    await asyncio.wait_for(opened.wait(), 5)

    assert channel1.state == 'connected'
    assert channel2.state == 'connected'
    assert channel1.peer == 'relay'
    assert channel1.peer_uuid == client2.uuid
    assert channel2.peer == 'alice'
    assert channel2.peer_uuid == client1.uuid

    channel1.send('hello')
    assert await asyncio.wait_for(received.get(), 5) == 'hello'

    await channel1.close()
    await asyncio.wait_for(closed.wait(), 10)

    await channel2.close()
    await client1.close()
    await client2.close()


@pytest.mark.asyncio()
async def test_ready_timeout() -> None:
    channel = PeerChannel(SignalingClient('ws://localhost:8765'))
    with pytest.raises(PeerConnectionTimeoutError):
        await channel.ready(0.01)
    await channel.close()


@pytest.mark.asyncio()
async def test_send_before_open() -> None:
    channel = PeerChannel(SignalingClient('ws://localhost:8765'))
    assert channel.peer == ''
    assert channel.peer_uuid is None
    assert channel.state == 'new'
    with pytest.raises(PeerConnectionError, match='not open'):
        channel.send('hello')
    await channel.close()


@pytest.mark.parametrize(
    'offer',
    (
        make_offer(error='peer not registered'),
        make_offer(description='not json'),
        make_offer(description='{"type": "bye"}'),
        make_offer(description=123),
        make_offer(description='{"type": "offer"}'),
        make_offer(description='[' * 200000),
    ),
)
@pytest.mark.asyncio()
async def test_handle_signal_errors(offer: PeerOffer) -> None:
    channel = PeerChannel(SignalingClient('ws://localhost:8765'))
    errors: list[PeerConnectionError] = []
    channel.on('error', errors.append)

    await channel.handle_signal(offer)

    assert len(errors) == 1
    assert isinstance(errors[0], PeerConnectionError)
    with pytest.raises(PeerConnectionError):
        await channel.ready(1)
    await channel.close()


@pytest.mark.asyncio()
async def test_handle_signal_error_without_listener() -> None:
    channel = PeerChannel(SignalingClient('ws://localhost:8765'))
    await channel.handle_signal(make_offer(error='unknown peer'))
    with pytest.raises(PeerConnectionError, match='unknown peer'):
        await channel.ready(1)
    await channel.close()


@pytest.mark.asyncio()
async def test_close_is_idempotent() -> None:
    channel = PeerChannel(SignalingClient('ws://localhost:8765'))
    closes: list[bool] = []
    channel.on('close', lambda: closes.append(True))

    await channel.close()
    await channel.close()

    assert closes == [True]
    assert channel.state == 'closed'
    with pytest.raises(PeerConnectionError, match='closed before opening'):
        await channel.ready(1)
