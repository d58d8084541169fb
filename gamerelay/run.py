"""CLI and serving functions for running a relay."""
from __future__ import annotations

import asyncio
import logging
import pprint
import signal
import uuid

import click

from gamerelay.config import RelayConfig
from gamerelay.observers import LoggingObserver
from gamerelay.p2p.transport import WebRTCTransport
from gamerelay.relay import RelayCore
from gamerelay.signaling.client import SignalingClient
from gamerelay.utils.logs import init_logging
from gamerelay.utils.logs import resolve_level
from gamerelay.utils.tasks import cancel_and_wait
from gamerelay.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


def periodic_roster_logger(
    relay: RelayCore,
    interval: float = 60,
    limit: int | None = 32,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Create an asyncio task which logs the connected players.

    Args:
        relay: Relay to log the roster of.
        interval: Seconds between log records.
        limit: Only list identities if fewer than this many players are
            connected. If `None`, identities are never listed.
        level: Logging level.

    Returns:
        Asyncio task.
    """

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            roster = relay.roster()
            message = f'Connected players: {len(roster)}'
            if limit is not None and 0 < len(roster) < limit:
                message = f'{message} ({", ".join(roster)})'
            logger.log(level, message)

    return spawn_guarded_background_task(_log, name='relay-roster-logger')


async def serve(config: RelayConfig) -> None:
    """Run a relay until SIGINT or SIGTERM.

    Registers with the signaling server described by `config.signaling`
    and admits every player that dials the relay's UUID.

    Note:
        This function does not configure logging. That is the
        responsibility of the caller.

    Args:
        config: Relay configuration.
    """
    relay_uuid = (
        uuid.uuid4()
        if config.signaling.uuid is None
        else uuid.UUID(config.signaling.uuid)
    )
    signaling = SignalingClient(
        config.signaling.address,
        client_name=config.signaling.name,
        client_uuid=relay_uuid,
        timeout=config.signaling.timeout,
        verify_certificate=config.signaling.verify_certificate,
    )
    transport = WebRTCTransport(signaling)

    loop = asyncio.get_running_loop()
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    loop.add_signal_handler(signal.SIGTERM, stop.set_result, None)

    config_repr = pprint.pformat(config, indent=2)
    logger.info(f'Relay configuration:\n{config_repr}')

    async with RelayCore(
        observers=[LoggingObserver()],
        liveness_interval=config.liveness.interval,
        departure_delay=config.liveness.departure_delay,
        name=config.signaling.name,
    ) as relay:
        roster_task: asyncio.Task[None] | None = None
        if config.logging.current_player_interval is not None:
            roster_task = periodic_roster_logger(
                relay,
                config.logging.current_player_interval,
                config.logging.current_player_limit,
                level=resolve_level(config.logging.default_level),
            )

        serve_task = spawn_guarded_background_task(
            relay.serve,
            transport,
            name='relay-serve',
        )
        logger.info(f'Relay accepting players at uuid {relay_uuid}')
        logger.info('Use ctrl-C to stop')
        await stop

        await cancel_and_wait(serve_task)
        await cancel_and_wait(roster_task)

    await transport.close()

    loop.remove_signal_handler(signal.SIGINT)
    loop.remove_signal_handler(signal.SIGTERM)

    logger.info('Relay shutdown')


@click.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--address', metavar='URL', help='Signaling server address.')
@click.option('--name', metavar='NAME', help='Name to register as.')
@click.option('--uuid', 'uuid_', metavar='UUID', help='UUID to register as.')
@click.option('--log-dir', metavar='PATH', help='Logging directory.')
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
def cli(
    config_path: str | None,
    address: str | None,
    name: str | None,
    uuid_: str | None,
    log_dir: str | None,
    log_level: str | None,
) -> None:
    """Run a game relay.

    The relay registers with a signaling server and relays player state
    between every game client that connects to it. If no configuration file
    is provided, the defaults of `RelayConfig()` are used. The remaining
    options override the configuration file.
    """
    config = (
        RelayConfig()
        if config_path is None
        else RelayConfig.from_toml(config_path)
    )

    if address is not None:
        config.signaling.address = address
    if name is not None:
        config.signaling.name = name
    if uuid_ is not None:
        try:
            uuid.UUID(uuid_)
        except ValueError as e:
            raise click.BadParameter(
                f'{uuid_} is not a valid UUID.',
                param_hint='--uuid',
            ) from e
        config.signaling.uuid = uuid_
    if log_dir is not None:
        config.logging.log_dir = log_dir
    if log_level is not None:
        config.logging.default_level = log_level.upper()

    init_logging(config.logging, 'relay.log')

    asyncio.run(serve(config))
