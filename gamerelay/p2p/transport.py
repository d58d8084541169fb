"""Accept inbound WebRTC connections forwarded by a signaling server."""
from __future__ import annotations

import logging
from typing import AsyncIterator

import websockets.exceptions

from gamerelay.p2p.connection import PeerChannel
from gamerelay.signaling.client import SignalingClient
from gamerelay.signaling.messages import PeerOffer
from gamerelay.signaling.messages import SignalingMessageDecodeError

logger = logging.getLogger(__name__)


class WebRTCTransport:
    """Source of inbound peer connections.

    Listens on a signaling client for offers addressed to it. Every offer
    creates a new [`PeerChannel`][gamerelay.p2p.connection.PeerChannel]
    named after the offering peer, which is yielded to the consumer before
    the offer is answered so event handlers can be attached before the
    channel can open.

    Example:
        ```python
        from gamerelay.p2p.transport import WebRTCTransport
        from gamerelay.signaling.client import SignalingClient

        transport = WebRTCTransport(SignalingClient(address, client_name='relay'))
        async for channel in transport.listen():
            channel.on('data', print)
        ```

    Args:
        signaling: Client for the signaling server. It is connected by
            [`listen()`][gamerelay.p2p.transport.WebRTCTransport.listen] if
            needed and closed by
            [`close()`][gamerelay.p2p.transport.WebRTCTransport.close].
    """

    def __init__(self, signaling: SignalingClient) -> None:
        self._signaling = signaling
        self._channels: set[PeerChannel] = set()
        self._closed = False

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._signaling.name}]'

    async def listen(self) -> AsyncIterator[PeerChannel]:
        """Yield a channel for each inbound offer until closed."""
        await self._signaling.connect()
        logger.info(
            f'{self._log_prefix}: listening for offers as '
            f'{self._signaling.uuid}',
        )
        while not self._closed:
            try:
                message = await self._signaling.recv()
            except websockets.exceptions.ConnectionClosed:
                if self._closed:
                    break
                logger.warning(
                    f'{self._log_prefix}: signaling connection lost',
                )
                continue
            except SignalingMessageDecodeError as e:
                logger.error(
                    f'{self._log_prefix}: error deserializing message from '
                    f'signaling server: {e} ...skipping message',
                )
                continue

            if not isinstance(message, PeerOffer):
                logger.error(
                    f'{self._log_prefix}: received unexpected message type '
                    f'{type(message).__name__} from signaling server',
                )
                continue
            if message.error is not None:
                logger.error(
                    f'{self._log_prefix}: signaling server returned an error '
                    f'for a message sent to {message.peer_uuid}: '
                    f'{message.error}',
                )
                continue
            if message.description_type != 'offer':
                logger.warning(
                    f'{self._log_prefix}: ignoring {message.description_type} '
                    f'from {message.source_name} because this transport '
                    'never dials',
                )
                continue

            channel = PeerChannel(
                self._signaling,
                peer_uuid=message.source_uuid,
                peer_name=message.source_name,
            )
            self._channels.add(channel)
            channel.on('close', lambda c=channel: self._channels.discard(c))

            yield channel
            await channel.handle_signal(message)

    async def close(self) -> None:
        """Stop listening and close every channel still open."""
        self._closed = True
        for channel in list(self._channels):
            await channel.close()
        self._channels.clear()
        await self._signaling.close()
        logger.info(f'{self._log_prefix}: transport closed')
