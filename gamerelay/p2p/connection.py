"""WebRTC data channel connection to one peer."""
from __future__ import annotations

import asyncio
import logging
import uuid
import warnings

from aiortc import RTCDataChannel
from aiortc import RTCPeerConnection
from aiortc import RTCSessionDescription
from aiortc.contrib.signaling import object_from_string
from aiortc.contrib.signaling import object_to_string
from aiortc.exceptions import InvalidStateError
from cryptography.utils import CryptographyDeprecationWarning
from pyee.asyncio import AsyncIOEventEmitter

from gamerelay.p2p.exceptions import PeerConnectionError
from gamerelay.p2p.exceptions import PeerConnectionTimeoutError
from gamerelay.signaling.client import SignalingClient
from gamerelay.signaling.messages import PeerOffer

warnings.simplefilter('ignore', CryptographyDeprecationWarning)

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_LABEL = 'game'


class PeerChannel(AsyncIOEventEmitter):
    """Peer-to-peer data channel.

    Wraps an aiortc `RTCPeerConnection` carrying a single unordered data
    channel and translates its callbacks into the four events the relay
    core listens for:

    * `open`: the data channel is ready.
    * `data`: a message arrived; the handler receives the `str` or `bytes`.
    * `close`: the channel, its DTLS transport, or the peer connection
      closed. Emitted at most once.
    * `error`: the handshake or connection failed; the handler receives a
      [`PeerConnectionError`][gamerelay.p2p.exceptions.PeerConnectionError].

    The side that dials calls
    [`send_offer()`][gamerelay.p2p.connection.PeerChannel.send_offer]; both
    sides pass descriptions forwarded by the signaling server to
    [`handle_signal()`][gamerelay.p2p.connection.PeerChannel.handle_signal].

    Example:
        ```python
        from gamerelay.p2p.connection import PeerChannel
        from gamerelay.signaling.client import SignalingClient

        client = await SignalingClient(address, client_name='alice')
        channel = PeerChannel(client)
        await channel.send_offer(relay_uuid)
        await channel.handle_signal(await client.recv())
        await channel.ready()
        channel.send('hello')
        ```

    Args:
        signaling: Client connection to the signaling server.
        peer_uuid: UUID of the remote peer, if already known.
        peer_name: Name of the remote peer, if already known.
        label: Label of the data channel created by the dialing side.
    """

    def __init__(
        self,
        signaling: SignalingClient,
        *,
        peer_uuid: uuid.UUID | None = None,
        peer_name: str | None = None,
        label: str = DEFAULT_CHANNEL_LABEL,
    ) -> None:
        super().__init__()
        self._signaling = signaling
        self._label = label
        self._peer_uuid = peer_uuid
        self._peer_name = peer_name

        self._pc = RTCPeerConnection()
        self._pc.on('connectionstatechange', self._on_connection_state_change)
        self._channel: RTCDataChannel | None = None

        # Resolves to None once open or to the error that prevented opening
        self._ready: asyncio.Future[
            PeerConnectionError | None
        ] = asyncio.get_running_loop().create_future()
        self._closed = False
        self._close_emitted = False

    @property
    def _log_prefix(self) -> str:
        remote = 'pending' if self._peer_name is None else self._peer_name
        return f'{self.__class__.__name__}[{self._signaling.name} > {remote}]'

    @property
    def peer(self) -> str:
        """Registered name of the remote peer (empty if not yet known)."""
        return '' if self._peer_name is None else self._peer_name

    @property
    def peer_uuid(self) -> uuid.UUID | None:
        """UUID of the remote peer, if known."""
        return self._peer_uuid

    @property
    def state(self) -> str:
        """Current peer connection state.

        Returns:
            One of 'new', 'connecting', 'connected', 'closed', or 'failed'.
        """
        return self._pc.connectionState

    async def send_offer(self, peer_uuid: uuid.UUID) -> None:
        """Open a data channel and send an offer to a peer.

        Args:
            peer_uuid: UUID of the peer registered with the signaling server.
        """
        self._peer_uuid = peer_uuid
        self._bind_channel(
            self._pc.createDataChannel(self._label, ordered=False),
        )
        await self._pc.setLocalDescription(await self._pc.createOffer())
        logger.info(f'{self._log_prefix}: sending offer to {peer_uuid}')
        await self._send_description('offer')

    async def handle_signal(self, message: PeerOffer) -> None:
        """Apply an offer or answer forwarded by the signaling server.

        Offers are answered. Errors reported by the server or unusable
        descriptions fail the connection and emit `error`.
        """
        if message.error is not None:
            self._fail(
                PeerConnectionError(
                    'Received error message from signaling server: '
                    f'{message.error}',
                ),
            )
            return

        try:
            description = object_from_string(message.description)
        except (KeyError, RecursionError, TypeError, ValueError) as e:
            self._fail(
                PeerConnectionError(f'Unable to parse description: {e}'),
            )
            return

        if not isinstance(description, RTCSessionDescription):
            self._fail(
                PeerConnectionError(
                    'Expected a session description but got '
                    f'{type(description).__name__}.',
                ),
            )
            return

        self._peer_uuid = message.source_uuid
        self._peer_name = message.source_name
        logger.info(
            f'{self._log_prefix}: received {description.type} from '
            f'{message.source_uuid}',
        )

        try:
            if description.type == 'offer':
                self._pc.on('datachannel', self._bind_channel)
                await self._pc.setRemoteDescription(description)
                await self._pc.setLocalDescription(
                    await self._pc.createAnswer(),
                )
                await self._send_description('answer')
            else:
                await self._pc.setRemoteDescription(description)
        except (InvalidStateError, TypeError, ValueError) as e:
            self._fail(
                PeerConnectionError(f'Unable to apply description: {e}'),
            )

    async def _send_description(self, description_type: str) -> None:
        assert self._peer_uuid is not None
        message = PeerOffer(
            source_uuid=self._signaling.uuid,
            source_name=self._signaling.name,
            peer_uuid=self._peer_uuid,
            description_type=description_type,  # type: ignore[arg-type]
            description=object_to_string(self._pc.localDescription),
        )
        await self._signaling.send(message)

    def _bind_channel(self, channel: RTCDataChannel) -> None:
        logger.debug(f'{self._log_prefix}: binding channel {channel.label}')
        self._channel = channel
        channel.on('message', lambda message: self.emit('data', message))
        channel.on('close', self._emit_close)
        # The DTLS transport notices an abrupt close before the channel does
        channel.transport.transport.on(
            'statechange',
            self._on_transport_state_change,
        )
        if channel.readyState == 'open':
            # Channels received by the answerer are already open
            self._on_open()
        else:
            channel.on('open', self._on_open)

    def _on_open(self) -> None:
        logger.info(f'{self._log_prefix}: data channel open')
        if not self._ready.done():
            self._ready.set_result(None)
        self.emit('open')

    def _on_transport_state_change(self) -> None:
        if self._channel is None:  # pragma: no cover
            return
        if self._channel.transport.transport.state in ('closed', 'failed'):
            self._emit_close()

    def _on_connection_state_change(self) -> None:
        state = self._pc.connectionState
        logger.debug(f'{self._log_prefix}: connection state is {state}')
        if state == 'failed':
            self._fail(
                PeerConnectionError(
                    f'Peer connection with {self.peer or self._peer_uuid} '
                    'failed.',
                ),
            )
        elif state == 'closed':
            self._emit_close()

    def _fail(self, error: PeerConnectionError) -> None:
        logger.error(f'{self._log_prefix}: {error}')
        if not self._ready.done():
            self._ready.set_result(error)
        if self.listeners('error'):
            self.emit('error', error)

    def _emit_close(self) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        logger.info(f'{self._log_prefix}: connection closed')
        if not self._ready.done():
            self._ready.set_result(
                PeerConnectionError('Connection closed before opening.'),
            )
        self.emit('close')

    def send(self, payload: str) -> None:
        """Queue a message on the data channel.

        Raises:
            PeerConnectionError: If the data channel is not open.
        """
        if self._channel is None or self._channel.readyState != 'open':
            raise PeerConnectionError(
                f'{self._log_prefix}: data channel is not open.',
            )
        self._channel.send(payload)

    async def ready(self, timeout: float | None = None) -> None:
        """Wait for the data channel to open.

        Args:
            timeout: Maximum seconds to wait. If `None`, wait indefinitely.

        Raises:
            PeerConnectionTimeoutError: If the channel is not open within
                the timeout.
            PeerConnectionError: If the connection failed or closed before
                opening.
        """
        try:
            error = await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError as e:
            raise PeerConnectionTimeoutError(
                'Timeout waiting for peer to peer connection to establish '
                f'in {self._log_prefix}.',
            ) from e
        if error is not None:
            raise error

    async def close(self) -> None:
        """Close the data channel and peer connection.

        Does not close the signaling client. Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug(f'{self._log_prefix}: closing connection')
        if self._channel is not None:
            self._channel.close()
        await self._pc.close()
        self._emit_close()
