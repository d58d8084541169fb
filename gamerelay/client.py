"""Minimal game client that connects to a relay.

Used to try a relay by hand and by the integration tests. A real game client
only needs to speak the same JSON messages over a WebRTC data channel.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from types import TracebackType
from typing import Any

import websockets.exceptions

from gamerelay.messages import decode_game_message
from gamerelay.messages import encode_game_message
from gamerelay.messages import EventName
from gamerelay.messages import GameMessage
from gamerelay.messages import MessageDecodeError
from gamerelay.p2p.connection import PeerChannel
from gamerelay.p2p.exceptions import PeerConnectionError
from gamerelay.signaling.client import SignalingClient
from gamerelay.signaling.messages import PeerOffer
from gamerelay.signaling.messages import SignalingMessageDecodeError
from gamerelay.utils.tasks import cancel_and_wait
from gamerelay.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


class GameClient:
    """Client side of a player's connection to a relay.

    The player's identity is the name its signaling client registers with.

    Example:
        ```python
        from gamerelay.client import GameClient
        from gamerelay.signaling.client import SignalingClient

        signaling = SignalingClient(address, client_name='alice')
        async with GameClient(signaling, relay_uuid) as client:
            client.send_update(1, 2, 0)
            roster = await client.recv()
        ```

    Args:
        signaling: Signaling client of this player. Closed along with the
            game client.
        relay_uuid: UUID the relay registered with.
        timeout: Seconds to wait for the data channel to open.
    """

    def __init__(
        self,
        signaling: SignalingClient,
        relay_uuid: uuid.UUID,
        *,
        timeout: float = 30,
    ) -> None:
        self._signaling = signaling
        self._relay_uuid = relay_uuid
        self._timeout = timeout

        self._channel: PeerChannel | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._messages: asyncio.Queue[GameMessage] = asyncio.Queue()

    async def __aenter__(self) -> GameClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def identity(self) -> str:
        """Identity the relay knows this player by."""
        return self._signaling.name

    @property
    def channel(self) -> PeerChannel:
        """Data channel to the relay.

        Raises:
            PeerConnectionError: If the client has not connected.
        """
        if self._channel is None:
            raise PeerConnectionError(
                'The client is not connected. Call connect() first.',
            )
        return self._channel

    async def connect(self) -> None:
        """Dial the relay and wait for the data channel to open.

        Raises:
            PeerConnectionTimeoutError: If the channel does not open within
                the timeout.
            PeerConnectionError: If the relay is unknown to the signaling
                server or the connection fails.
        """
        await self._signaling.connect()
        self._channel = PeerChannel(self._signaling)
        self._channel.on('data', self._on_data)
        self._channel.on('error', self._on_error)
        self._listener_task = spawn_guarded_background_task(
            self._handle_signaling,
            name=f'game-client-signaling-{self.identity}',
        )
        await self._channel.send_offer(self._relay_uuid)
        await self._channel.ready(self._timeout)

    async def _handle_signaling(self) -> None:
        while True:
            try:
                message = await self._signaling.recv()
            except websockets.exceptions.ConnectionClosed:
                break
            except SignalingMessageDecodeError as e:
                logger.error(f'Skipping undecodable signaling message: {e}')
                continue
            if isinstance(message, PeerOffer) and self._channel is not None:
                await self._channel.handle_signal(message)

    def _on_data(self, payload: str | bytes) -> None:
        try:
            self._messages.put_nowait(decode_game_message(payload))
        except MessageDecodeError as e:
            logger.warning(f'Dropping message from relay: {e}')

    def _on_error(self, error: PeerConnectionError) -> None:
        logger.error(f'Connection to relay failed: {error}')

    def send(self, message: GameMessage) -> None:
        """Send a message to the relay."""
        self.channel.send(encode_game_message(message))

    def send_update(self, x: float, y: float, animation: int) -> None:
        """Report this player's position and animation."""
        state: dict[str, Any] = {'x': x, 'y': y, 'animation': animation}
        self.send(GameMessage(EventName.update.value, json.dumps(state)))

    def send_flip(self, flip: bool | int) -> None:
        """Report this player's facing direction."""
        self.send(GameMessage(EventName.flip.value, json.dumps(flip)))

    async def recv(self, timeout: float | None = None) -> GameMessage:
        """Receive the next message from the relay.

        Raises:
            asyncio.TimeoutError: If no message arrives within the timeout.
        """
        return await asyncio.wait_for(self._messages.get(), timeout)

    async def close(self) -> None:
        """Close the data channel and the signaling client."""
        await cancel_and_wait(self._listener_task)
        self._listener_task = None
        if self._channel is not None:
            await self._channel.close()
        await self._signaling.close()
