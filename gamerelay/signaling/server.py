"""Signaling server for establishing WebRTC peer connections.

The signaling server is a lightweight server reachable by every peer (e.g.,
it has a public IP address). Its only job is forwarding session
descriptions between two peers during the WebRTC handshake. Once the data
channel is open the peers talk directly.
"""
from __future__ import annotations

import dataclasses
import datetime
import logging
import sys
import uuid
from typing import Any

import websockets.exceptions
from websockets.asyncio.server import ServerConnection

from gamerelay.signaling.exceptions import ForbiddenError
from gamerelay.signaling.messages import decode_signaling_message
from gamerelay.signaling.messages import encode_signaling_message
from gamerelay.signaling.messages import PeerOffer
from gamerelay.signaling.messages import SignalingMessage
from gamerelay.signaling.messages import SignalingMessageDecodeError
from gamerelay.signaling.messages import SignalingMessageEncodeError
from gamerelay.signaling.messages import SignalingRegistration
from gamerelay.signaling.messages import SignalingResponse

logger = logging.getLogger(__name__)

CLOSE_UNKNOWN_MESSAGE = 4000
CLOSE_FORBIDDEN = 4002
CLOSE_MESSAGE_TOO_LARGE = 4003


def _utc_current_time() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc)


@dataclasses.dataclass(frozen=True, eq=False)
class Peer:
    """A registered peer.

    Attributes:
        name: Name of the peer.
        uuid: UUID of the peer.
        websocket: WebSocket connection to the peer.
        created: Time the peer registered.
    """

    name: str
    uuid: uuid.UUID
    websocket: Any
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        address = str(getattr(self.websocket, 'remote_address', None))
        return (
            f'{self.__class__.__name__}(name={self.name}, uuid={self.uuid}, '
            f'address={address}, created={created})'
        )


class PeerDirectory:
    """Registered peers indexed by UUID and by websocket."""

    def __init__(self) -> None:
        self._by_uuid: dict[uuid.UUID, Peer] = {}
        self._by_websocket: dict[Any, Peer] = {}

    def __len__(self) -> int:
        return len(self._by_uuid)

    def add_peer(self, peer: Peer) -> None:
        self._by_uuid[peer.uuid] = peer
        self._by_websocket[peer.websocket] = peer

    def get_peers(self) -> list[Peer]:
        return list(self._by_uuid.values())

    def get_peer_by_uuid(self, uuid: uuid.UUID) -> Peer | None:
        return self._by_uuid.get(uuid, None)

    def get_peer_by_websocket(self, websocket: Any) -> Peer | None:
        return self._by_websocket.get(websocket, None)

    def remove_peer(self, peer: Peer) -> None:
        if self._by_uuid.get(peer.uuid) is peer:
            del self._by_uuid[peer.uuid]
        if self._by_websocket.get(peer.websocket) is peer:
            del self._by_websocket[peer.websocket]


class SignalingServer:
    """WebRTC signaling server.

    Peers register with a name and UUID, then send
    [`PeerOffer`][gamerelay.signaling.messages.PeerOffer] messages addressed
    to another peer's UUID. The server forwards each offer or answer to its
    destination, or bounces it back to the sender with `error` set when the
    destination is not registered.

    The server is built on websockets and designed to be served using
    [`serve()`][gamerelay.signaling.run.serve].

    The handler closes a connection for the following reasons.

    - An undecodable or unexpected message is received (code 4000).
    - An unregistered client tries to forward an offer (code 4002).
    - A message is larger than `max_message_bytes` (code 4003).

    Args:
        max_message_bytes: Optional maximum size of client messages in bytes.
            Size is computed with [`sys.getsizeof()`][sys.getsizeof] so it
            includes the PyObject overhead.
    """

    def __init__(self, max_message_bytes: int | None = None) -> None:
        self._peers = PeerDirectory()
        self._max_message_bytes = max_message_bytes

    @property
    def peers(self) -> PeerDirectory:
        """Directory of registered peers."""
        return self._peers

    async def send(self, peer: Peer, message: SignalingMessage) -> None:
        """Encode and send a message to a peer.

        Encoding errors and closed connections are logged, not raised.
        """
        try:
            message_str = encode_signaling_message(message)
        except SignalingMessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return

        try:
            await peer.websocket.send(message_str)
        except websockets.exceptions.ConnectionClosed:
            logger.error(
                f'Connection to {peer.name} closed while attempting to send '
                'message',
            )

    async def register(
        self,
        websocket: ServerConnection,
        request: SignalingRegistration,
    ) -> None:
        """Register a peer.

        If the UUID is already registered on a different websocket, that
        websocket is closed and the new registration replaces it.
        """
        existing = self._peers.get_peer_by_uuid(request.uuid)
        if existing is not None and existing.websocket is not websocket:
            logger.info(
                f'Previously registered peer {request.uuid} attempting to '
                'reregister on new socket so old socket associated with '
                'existing registration will be closed',
            )
            await self.unregister(existing, expected=False)

        peer = Peer(name=request.name, uuid=request.uuid, websocket=websocket)
        self._peers.add_peer(peer)
        logger.info(f'Registered peer: {peer}')

        await self.send(peer, SignalingResponse(success=True))

    async def unregister(self, peer: Peer, expected: bool) -> None:
        """Unregister a peer and close its websocket.

        Args:
            peer: Peer to unregister.
            expected: If the connection was closed intentionally or due to an
                error.
        """
        reason = 'ok' if expected else 'unexpected'
        logger.info(
            f'Unregistering peer {peer.uuid} ({peer.name}) for {reason} '
            'reason',
        )
        self._peers.remove_peer(peer)
        await peer.websocket.close(code=1000 if expected else 1001)

    async def forward(self, source: Peer, offer: PeerOffer) -> None:
        """Forward an offer or answer to its destination peer."""
        target = self._peers.get_peer_by_uuid(offer.peer_uuid)
        if target is None:
            logger.warning(
                f'Peer {source.uuid} ({source.name}) attempting to send '
                f'message to unknown peer {offer.peer_uuid}',
            )
            offer.error = (
                'Cannot forward peer offer to peer '
                f'{offer.peer_uuid} because this peer is not registered '
                'with the signaling server.'
            )
            await self.send(source, offer)
            return

        logger.info(
            f'Forwarding {offer.description_type} from {source.uuid} '
            f'({source.name}) to {target.uuid} ({target.name})',
        )
        await self.send(target, offer)

    async def _process_message(
        self,
        websocket: ServerConnection,
        message: SignalingMessage,
    ) -> None:
        if isinstance(message, SignalingRegistration):
            await self.register(websocket, message)
        elif isinstance(message, PeerOffer):
            peer = self._peers.get_peer_by_websocket(websocket)
            if peer is None:
                logger.warning(
                    'Unregistered client at '
                    f'{getattr(websocket, "remote_address", None)} '
                    f'claiming UUID {message.source_uuid} attempted to '
                    'forward a peer offer.',
                )
                raise ForbiddenError(
                    'Client has not registered with the signaling server.',
                )
            await self.forward(peer, message)
        else:
            raise SignalingMessageDecodeError(
                f'Unexpected message type {type(message).__name__}.',
            )

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server connection handler."""
        while True:
            try:
                message_str = await websocket.recv()
            except websockets.exceptions.ConnectionClosedOK:
                peer = self._peers.get_peer_by_websocket(websocket)
                if peer is not None:
                    await self.unregister(peer, expected=True)
                break
            except websockets.exceptions.ConnectionClosedError:
                peer = self._peers.get_peer_by_websocket(websocket)
                if peer is not None:
                    await self.unregister(peer, expected=False)
                break

            size = sys.getsizeof(message_str)
            if (
                self._max_message_bytes is not None
                and size > self._max_message_bytes
            ):
                logger.warning(
                    'Client at '
                    f'{getattr(websocket, "remote_address", None)} sent '
                    f'message with size {size} bytes which exceeds the max '
                    f'configured size of {self._max_message_bytes} bytes. '
                    f'Connection closed with code {CLOSE_MESSAGE_TOO_LARGE}',
                )
                self._forget(websocket)
                await websocket.close(
                    CLOSE_MESSAGE_TOO_LARGE,
                    reason='Message length exceeds limit.',
                )
                break

            try:
                if not isinstance(message_str, str):
                    raise SignalingMessageDecodeError(
                        'Got message as bytes but expected str.',
                    )
                message = decode_signaling_message(message_str)
                await self._process_message(websocket, message)
            except SignalingMessageDecodeError as e:
                logger.error(
                    'Closing websocket because of bad message from '
                    f'{getattr(websocket, "remote_address", None)}: {e}',
                )
                self._forget(websocket)
                await websocket.close(
                    CLOSE_UNKNOWN_MESSAGE,
                    reason='Unknown message type.',
                )
                break
            except ForbiddenError as e:
                await websocket.close(
                    CLOSE_FORBIDDEN,
                    reason=f'{e.__class__.__name__}: {e}',
                )
                break

    def _forget(self, websocket: ServerConnection) -> None:
        peer = self._peers.get_peer_by_websocket(websocket)
        if peer is not None:
            self._peers.remove_peer(peer)
