"""Client interface to a signaling server."""
from __future__ import annotations

import asyncio
import logging
import ssl
import sys
import uuid
from types import TracebackType

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect
from websockets.protocol import State

from gamerelay.signaling.exceptions import SignalingNotConnectedError
from gamerelay.signaling.exceptions import SignalingRegistrationError
from gamerelay.signaling.messages import decode_signaling_message
from gamerelay.signaling.messages import encode_signaling_message
from gamerelay.signaling.messages import SignalingMessage
from gamerelay.signaling.messages import SignalingMessageDecodeError
from gamerelay.signaling.messages import SignalingRegistration
from gamerelay.signaling.messages import SignalingResponse
from gamerelay.utils.environment import hostname
from gamerelay.utils.tasks import cancel_and_wait
from gamerelay.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 60


class SignalingClient:
    """Client interface to a signaling server.

    Wraps the websocket connection to the signaling server, registers the
    client on connect, and reconnects automatically.

    Tip:
        This class can be used as an async context manager!
        ```python
        from gamerelay.signaling.client import SignalingClient

        async with SignalingClient('ws://localhost:8765') as client:
            await client.send(...)
            message = await client.recv()
        ```

    Args:
        address: Address of the signaling server. Should start with `ws://`
            or `wss://`.
        client_name: Name to register with. The relay uses the name of a
            game client as its player identity. Defaults to the hostname.
        client_uuid: UUID to register with. One is generated if `None`.
        reconnect_task: Spawn a background task which reconnects when the
            websocket closes. Otherwise reconnections are only attempted when
            sending or receiving.
        ssl_context: Custom SSL context used for `wss://` addresses.
        timeout: Time to wait in seconds on the server connection and
            registration reply.
        verify_certificate: Verify the server's SSL certificate. Only used
            if `ssl_context` is `None` and connecting to a `wss://` address.

    Raises:
        ValueError: If address does not start with `ws://` or `wss://`.
    """

    def __init__(
        self,
        address: str,
        *,
        client_name: str | None = None,
        client_uuid: uuid.UUID | None = None,
        reconnect_task: bool = True,
        ssl_context: ssl.SSLContext | None = None,
        timeout: float = 10,
        verify_certificate: bool = True,
    ) -> None:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Signaling server address must start with ws:// or wss://. '
                f'Got {address}.',
            )

        self._address = address
        self._name = hostname() if client_name is None else client_name
        self._uuid = uuid.uuid4() if client_uuid is None else client_uuid
        self._timeout = timeout

        if self._address.startswith('wss://') and ssl_context is None:
            ssl_context = ssl.create_default_context()
            if not verify_certificate:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
        self._ssl_context = ssl_context
        self._create_reconnect_task = reconnect_task

        self._initial_backoff_seconds = 1.0

        self._connect_lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._websocket: ClientConnection | None = None

    async def __aenter__(self) -> Self:
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
    def address(self) -> str:
        """Address of the signaling server."""
        return self._address

    @property
    def name(self) -> str:
        """Name of client as registered with the signaling server."""
        return self._name

    @property
    def uuid(self) -> uuid.UUID:
        """UUID of client as registered with the signaling server."""
        return self._uuid

    @property
    def websocket(self) -> ClientConnection:
        """Websocket connection to the signaling server.

        Raises:
            SignalingNotConnectedError: If the websocket connection is not
                open. This usually means
                [`connect()`][gamerelay.signaling.client.SignalingClient.connect]
                needs to be called.
        """
        if self._websocket is not None and self._websocket.state is State.OPEN:
            return self._websocket
        raise SignalingNotConnectedError(
            'Websocket connection to the signaling server is not open. '
            'Try calling connect() first.',
        )

    async def _register(self, timeout: float) -> ClientConnection:
        """Open a websocket connection and register with the server.

        Raises:
            OSError: If the server could not be connected to.
            asyncio.TimeoutError: If the server did not reply within the
                timeout.
            websockets.exceptions.ConnectionClosed: If the websocket
                connection was closed while registering.
            SignalingRegistrationError: If the server rejected the
                registration or replied with something unexpected.
        """
        websocket = await connect(
            self._address,
            open_timeout=timeout,
            ssl=self._ssl_context,
        )

        registration = SignalingRegistration(self.name, self.uuid)
        await websocket.send(encode_signaling_message(registration))

        try:
            message_str = await asyncio.wait_for(websocket.recv(), timeout)
            if not isinstance(message_str, str):
                raise SignalingMessageDecodeError(
                    'Received non-string type on websocket.',
                )
            message = decode_signaling_message(message_str)
        except SignalingMessageDecodeError as e:
            await websocket.close()
            raise SignalingRegistrationError(
                'Unable to decode response message from signaling server.',
            ) from e

        if not isinstance(message, SignalingResponse):
            await websocket.close()
            raise SignalingRegistrationError(
                'Signaling server replied with unexpected message type: '
                f'{type(message).__name__}.',
            )
        if not message.success:
            await websocket.close()
            raise SignalingRegistrationError(
                'Failed to register with the signaling server: '
                f'{message.message}',
            )

        logger.info(
            'Established client connection to signaling server at '
            f'{self._address} with client uuid={self.uuid} '
            f'and name={self.name}',
        )
        return websocket

    async def _reconnect_on_close(self) -> None:
        assert self._websocket is not None
        while True:
            await self._websocket.wait_closed()
            logger.warning(
                f'Connection to signaling server at {self._address} closed, '
                'reconnecting',
            )
            await self.connect()

    async def connect(self, retry: bool = True) -> None:
        """Connect to the signaling server.

        A no-op if a connection is already open. Connection failures are
        retried with exponential backoff when `retry` is `True`.

        Args:
            retry: Retry with backoff starting at one second and doubling to
                a max of 60 seconds.
        """
        async with self._connect_lock:
            if (
                self._websocket is not None
                and self._websocket.state is State.OPEN
            ):
                return

            backoff_seconds = self._initial_backoff_seconds
            while True:
                try:
                    self._websocket = await self._register(
                        timeout=self._timeout,
                    )
                except (
                    OSError,
                    asyncio.TimeoutError,
                    websockets.exceptions.ConnectionClosed,
                ) as e:
                    if not retry:
                        raise
                    logger.warning(
                        'Registration with signaling server at '
                        f'{self._address} failed because of {e!r}. '
                        f'Retrying connection in {backoff_seconds} seconds',
                    )
                    await asyncio.sleep(backoff_seconds)
                    backoff_seconds = min(
                        backoff_seconds * 2,
                        MAX_BACKOFF_SECONDS,
                    )
                else:
                    break

            if self._reconnect_task is None and self._create_reconnect_task:
                self._reconnect_task = spawn_guarded_background_task(
                    self._reconnect_on_close,
                    name='signaling-client-reconnect',
                )

    async def close(self) -> None:
        """Close the connection to the signaling server."""
        await cancel_and_wait(self._reconnect_task)
        self._reconnect_task = None
        if self._websocket is not None:
            await self._websocket.close()

    async def recv(self) -> SignalingMessage:
        """Receive the next message.

        Raises:
            SignalingMessageDecodeError: If the message received cannot be
                decoded.
        """
        try:
            websocket = self.websocket
        except SignalingNotConnectedError:
            await self.connect()
            websocket = self.websocket

        message_str = await websocket.recv()
        if not isinstance(message_str, str):
            raise SignalingMessageDecodeError(
                'Received bytes from websocket but expected str.',
            )
        return decode_signaling_message(message_str)

    async def send(self, message: SignalingMessage) -> None:
        """Send a message to the signaling server."""
        message_str = encode_signaling_message(message)

        try:
            websocket = self.websocket
        except SignalingNotConnectedError:
            await self.connect()
            websocket = self.websocket

        await websocket.send(message_str)
