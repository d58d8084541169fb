"""Relay core: session admission, state fan-out, and liveness checks."""
from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any
from typing import Generator
from typing import Iterable

from gamerelay.events import DataReceived
from gamerelay.events import PlayerDeparted
from gamerelay.events import RelayEvent
from gamerelay.events import SessionAdmitted
from gamerelay.events import SessionClosed
from gamerelay.events import SessionErrored
from gamerelay.events import SessionOpened
from gamerelay.messages import decode_game_message
from gamerelay.messages import disconnected_message
from gamerelay.messages import encode_game_message
from gamerelay.messages import EventName
from gamerelay.messages import MessageDecodeError
from gamerelay.messages import parse_flip
from gamerelay.messages import parse_update
from gamerelay.messages import roster_message
from gamerelay.messages import RosterEntry
from gamerelay.observers import RelayObserver
from gamerelay.p2p.exceptions import PeerConnectionError
from gamerelay.protocols import FAILED_STATES
from gamerelay.protocols import PeerConnection
from gamerelay.protocols import PeerTransport
from gamerelay.registry import SessionRegistry
from gamerelay.session import Lifecycle
from gamerelay.session import Session
from gamerelay.utils.tasks import cancel_and_wait
from gamerelay.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)

DEFAULT_LIVENESS_INTERVAL = 0.5
DEFAULT_DEPARTURE_DELAY = 0.5


class RelayCore:
    """Relay of player state between peer connections.

    The relay keeps one [`Session`][gamerelay.session.Session] per connected
    identity. Whenever a player sends an `update`, every open session is
    sent a roster of the other open players. When a player leaves, the
    remaining players are told after a short grace period so that the
    player's last state update can drain first.

    All state changes happen in a single dispatcher task. Transport
    callbacks and liveness timers only post
    [events][gamerelay.events] onto a queue, so the
    [`SessionRegistry`][gamerelay.registry.SessionRegistry] needs no locks.

    Example:
        ```python
        from gamerelay.observers import LoggingObserver
        from gamerelay.relay import RelayCore

        async with RelayCore(observers=[LoggingObserver()]) as relay:
            await relay.serve(transport)
        ```

    Note:
        The relay must be started with `await`, `async with`, or
        [`async_init()`][gamerelay.relay.RelayCore.async_init] before
        events are processed.

    Args:
        registry: Registry to store sessions in. A new one is created if
            not provided.
        observers: Observers notified of connects, disconnects and
            diagnostics.
        liveness_interval: Seconds between connectivity checks of each
            open session.
        departure_delay: Seconds to wait after a player disconnects before
            telling the other players.
        name: Name used in log messages.
    """

    def __init__(
        self,
        registry: SessionRegistry | None = None,
        *,
        observers: Iterable[RelayObserver] = (),
        liveness_interval: float = DEFAULT_LIVENESS_INTERVAL,
        departure_delay: float = DEFAULT_DEPARTURE_DELAY,
        name: str = 'relay',
    ) -> None:
        self._registry = SessionRegistry() if registry is None else registry
        self._observers = list(observers)
        self._liveness_interval = liveness_interval
        self._departure_delay = departure_delay
        self._name = name

        self._events: asyncio.Queue[RelayEvent] = asyncio.Queue()
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._departure_tasks: set[asyncio.Task[Any]] = set()

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._name}]'

    @property
    def registry(self) -> SessionRegistry:
        """Registry of admitted sessions."""
        return self._registry

    async def async_init(self) -> None:
        """Start the dispatcher. Calling this twice is a no-op."""
        if self._dispatcher_task is None:
            self._dispatcher_task = spawn_guarded_background_task(
                self._process_events,
                name=f'relay-dispatcher-{self._name}',
            )

    async def __aenter__(self) -> RelayCore:
        await self.async_init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    def __await__(self) -> Generator[Any, None, RelayCore]:
        return self.__aenter__().__await__()

    async def close(self) -> None:
        """Stop the dispatcher and close every session.

        Pending events are discarded. Players are not sent departure
        events because every connection is being closed.
        """
        await cancel_and_wait(self._dispatcher_task)
        self._dispatcher_task = None

        for task in list(self._departure_tasks):
            await cancel_and_wait(task)
        self._departure_tasks.clear()

        for session in self._registry.get_sessions():
            await self._teardown(session)

        logger.info(f'{self._log_prefix}: relay closed')

    def add_observer(self, observer: RelayObserver) -> None:
        """Register an observer for lifecycle notifications."""
        self._observers.append(observer)

    def admit(
        self,
        connection: PeerConnection,
        identity: str | None = None,
    ) -> Session:
        """Admit a new inbound connection.

        The session starts out connecting. Any previous session for the same
        identity is closed when the dispatcher processes the admission,
        before the new session is stored.

        Args:
            connection: Transport handle of the new connection.
            identity: Identity of the player. Defaults to `connection.peer`.

        Returns:
            The new session.
        """
        identity = connection.peer if identity is None else identity
        session = Session(identity, connection)

        connection.on('open', lambda: self.post(SessionOpened(session)))
        connection.on(
            'data',
            lambda payload: self.post(DataReceived(session, payload)),
        )
        connection.on('close', lambda: self.post(SessionClosed(session)))
        connection.on(
            'error',
            lambda detail=None: self.post(SessionErrored(session, detail)),
        )

        self.post(SessionAdmitted(session))
        logger.debug(f'{self._log_prefix}: admitted connection from {identity}')
        return session

    async def serve(self, transport: PeerTransport) -> None:
        """Admit every connection yielded by the transport."""
        logger.info(f'{self._log_prefix}: accepting connections')
        async for connection in transport.listen():
            self.admit(connection)
        logger.info(f'{self._log_prefix}: transport stopped listening')

    def post(self, event: RelayEvent) -> None:
        """Queue an event for the dispatcher."""
        self._events.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every queued event has been processed.

        Raises:
            RuntimeError: If the dispatcher has not been started.
        """
        if self._dispatcher_task is None:
            raise RuntimeError(
                'The relay dispatcher has not been started. Is the relay '
                'being initialized with await?',
            )
        await self._events.join()

    def roster(self) -> list[str]:
        """Identities of the open sessions in registry order."""
        return [s.identity for s in self._registry.get_open_sessions()]

    def snapshot(self, exclude: Session | None = None) -> list[RosterEntry]:
        """Build a roster of open sessions.

        Args:
            exclude: Session the roster is meant for. Entries with its
                identity are left out.
        """
        return [
            session.state.to_entry(session.identity)
            for session in self._registry.get_open_sessions()
            if exclude is None or session.identity != exclude.identity
        ]

    def broadcast(self, origin: Session) -> None:
        """Send every open session a roster of the other open sessions.

        The origin is served first. Each roster reflects the registry at the
        moment it is built.
        """
        recipients = sorted(
            self._registry.get_open_sessions(),
            key=lambda session: session is not origin,
        )
        for recipient in recipients:
            message = roster_message(self.snapshot(exclude=recipient))
            self._send(recipient, encode_game_message(message))
        logger.debug(
            f'{self._log_prefix}: broadcast update from {origin.identity} '
            f'to {len(recipients)} session(s)',
        )

    async def _process_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.dispatch(event)
            finally:
                self._events.task_done()

    async def dispatch(self, event: RelayEvent) -> None:
        """Apply a single event.

        Warning:
            This is normally called by the dispatcher task. Calling it from
            anywhere else while the dispatcher runs breaks the single
            writer guarantee of the registry.
        """
        if isinstance(event, SessionAdmitted):
            await self._handle_admitted(event.session)
        elif isinstance(event, SessionOpened):
            self._handle_opened(event.session)
        elif isinstance(event, DataReceived):
            self._handle_data(event.session, event.payload)
        elif isinstance(event, SessionClosed):
            await self._handle_closed(event.session, event.reason)
        elif isinstance(event, SessionErrored):
            await self._handle_errored(event.session, event.detail)
        elif isinstance(event, PlayerDeparted):
            self._announce_departure(event.identity)
        else:
            raise AssertionError('Unreachable.')

    async def _handle_admitted(self, session: Session) -> None:
        previous = self._registry.get_session(session.identity)
        if previous is not None and previous is not session:
            logger.info(
                f'{self._log_prefix}: {session.identity} connected again so '
                'the connection associated with the existing session will '
                'be closed',
            )
            if await self._teardown(previous):
                self._notify('disconnected', previous.identity)
        self._registry.add_session(session)

    def _handle_opened(self, session: Session) -> None:
        if (
            session.lifecycle is not Lifecycle.CONNECTING
            or not self._registry.is_current(session)
        ):
            logger.debug(
                f'{self._log_prefix}: ignoring open event of stale '
                f'{session}',
            )
            return

        session.lifecycle = Lifecycle.OPEN
        logger.info(f'{self._log_prefix}: session opened for {session.identity}')
        self._notify('connected', session.identity)
        session.monitor = spawn_guarded_background_task(
            self._monitor_liveness,
            session,
            name=f'relay-liveness-{session.identity}',
        )

    def _handle_data(self, session: Session, payload: str | bytes) -> None:
        if not session.is_open or not self._registry.is_current(session):
            return

        try:
            message = decode_game_message(payload)
            if message.event_name == EventName.update.value:
                session.state.apply(parse_update(message.data))
                self.broadcast(session)
            elif message.event_name == EventName.flip.value:
                session.state.flip = parse_flip(message.data)
            else:
                logger.debug(
                    f'{self._log_prefix}: ignoring unknown event '
                    f'{message.event_name!r} from {session.identity}',
                )
        except MessageDecodeError as e:
            logger.debug(
                f'{self._log_prefix}: dropping malformed message from '
                f'{session.identity}: {e}',
            )

    async def _handle_closed(self, session: Session, reason: str) -> None:
        if session.lifecycle is Lifecycle.CLOSED:
            return

        was_open = await self._teardown(session)
        logger.info(
            f'{self._log_prefix}: session for {session.identity} closed '
            f'({reason})',
        )
        if was_open:
            self._notify('disconnected', session.identity)
            self._schedule_departure(session.identity)

    async def _handle_errored(self, session: Session, detail: Any) -> None:
        if session.lifecycle is Lifecycle.CLOSED:
            return

        was_open = await self._teardown(session)
        self._notify(
            'diagnostic',
            'An error occurred while communicating with '
            f'{session.identity}, connection closed. {detail}',
        )
        if was_open:
            self._notify('disconnected', session.identity)
            self._announce_departure(session.identity)

    async def _teardown(self, session: Session) -> bool:
        """Close a session's monitor and connection.

        Returns:
            If the session was open before the teardown.
        """
        if session.lifecycle is Lifecycle.CLOSED:
            return False

        was_open = session.lifecycle is Lifecycle.OPEN
        session.lifecycle = Lifecycle.CLOSING
        self._registry.remove_session(session)
        await cancel_and_wait(session.monitor)
        session.monitor = None
        await session.connection.close()
        session.lifecycle = Lifecycle.CLOSED
        return was_open

    def _schedule_departure(self, identity: str) -> None:
        task = spawn_guarded_background_task(
            self._post_departure_later,
            identity,
            name=f'relay-departure-{identity}',
        )
        self._departure_tasks.add(task)
        task.add_done_callback(self._departure_tasks.discard)

    async def _post_departure_later(self, identity: str) -> None:
        await asyncio.sleep(self._departure_delay)
        self.post(PlayerDeparted(identity))

    def _announce_departure(self, identity: str) -> None:
        current = self._registry.get_session(identity)
        if current is not None and current.is_open:
            logger.debug(
                f'{self._log_prefix}: {identity} reconnected before its '
                'departure was announced',
            )
            return

        payload = encode_game_message(disconnected_message(identity))
        for recipient in self._registry.get_open_sessions():
            if recipient.identity != identity:  # pragma: no branch
                self._send(recipient, payload)

    async def _monitor_liveness(self, session: Session) -> None:
        while True:
            await asyncio.sleep(self._liveness_interval)
            if not session.is_open:
                return
            state = session.connection.state
            if state in FAILED_STATES:
                logger.warning(
                    f'{self._log_prefix}: liveness check found connection '
                    f'of {session.identity} {state}',
                )
                self.post(
                    SessionClosed(
                        session,
                        reason=f'liveness check found connection {state}',
                    ),
                )
                return

    def _send(self, session: Session, payload: str) -> None:
        try:
            session.connection.send(payload)
        except PeerConnectionError as e:
            logger.debug(
                f'{self._log_prefix}: failed to send to {session.identity}: '
                f'{e}',
            )

    def _notify(self, method: str, *args: Any) -> None:
        for observer in self._observers:
            try:
                getattr(observer, method)(*args)
            except Exception:
                logger.exception(
                    f'{self._log_prefix}: observer {observer!r} raised while '
                    f'handling {method}',
                )
