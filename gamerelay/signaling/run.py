"""CLI and serving functions for running a signaling server."""
from __future__ import annotations

import asyncio
import logging
import pprint
import signal
import ssl

import click
from websockets.asyncio.server import serve as websockets_serve

from gamerelay.config import SignalingServingConfig
from gamerelay.signaling.server import SignalingServer
from gamerelay.utils.logs import init_logging
from gamerelay.utils.logs import resolve_level
from gamerelay.utils.tasks import cancel_and_wait
from gamerelay.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


def periodic_peer_logger(
    server: SignalingServer,
    interval: float = 60,
    limit: int | None = 32,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Create an asyncio task which logs the registered peers.

    Args:
        server: Signaling server instance to log registered peers of.
        interval: Seconds between log records.
        limit: Only log the detailed peer list if fewer than this many
            peers are registered.
        level: Logging level.
    """

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            peers = sorted(server.peers.get_peers(), key=lambda p: p.name)
            message = f'Registered peers: {len(peers)}'
            if limit is not None and 0 < len(peers) < limit:
                details = '\n'.join(repr(peer) for peer in peers)
                message = f'{message}\n{details}'
            logger.log(level, message)

    return spawn_guarded_background_task(_log, name='signaling-peer-logger')


async def serve(config: SignalingServingConfig) -> None:
    """Run the signaling server until SIGINT or SIGTERM.

    Note:
        This function does not configure logging. That is the
        responsibility of the caller.

    Args:
        config: Serving configuration.
    """
    server = SignalingServer(max_message_bytes=config.max_message_bytes)

    loop = asyncio.get_running_loop()
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    loop.add_signal_handler(signal.SIGTERM, stop.set_result, None)

    ssl_context: ssl.SSLContext | None = None
    if config.certfile is not None:
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(config.certfile, keyfile=config.keyfile)

    peer_logger_task: asyncio.Task[None] | None = None
    if config.logging.current_player_interval is not None:
        peer_logger_task = periodic_peer_logger(
            server,
            config.logging.current_player_interval,
            config.logging.current_player_limit,
            level=resolve_level(config.logging.default_level),
        )

    config_repr = pprint.pformat(config, indent=2)
    logger.info(f'Signaling serving configuration:\n{config_repr}')

    async with websockets_serve(
        server.handler,
        config.host,
        config.port,
        ssl=ssl_context,
    ):
        logger.info(f'Signaling server listening on port {config.port}')
        logger.info('Use ctrl-C to stop')
        await stop

    await cancel_and_wait(peer_logger_task)

    loop.remove_signal_handler(signal.SIGINT)
    loop.remove_signal_handler(signal.SIGTERM)

    logger.info('Signaling server shutdown')


@click.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--host', metavar='ADDR', help='Interface to bind to.')
@click.option('--port', type=int, metavar='PORT', help='Port to bind to.')
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
    host: str | None,
    port: int | None,
    log_dir: str | None,
    log_level: str | None,
) -> None:
    """Run a signaling server.

    Game clients and relays register with the signaling server to exchange
    the offers and answers that set up their WebRTC data channels. Options
    override the configuration file.
    """
    config = (
        SignalingServingConfig()
        if config_path is None
        else SignalingServingConfig.from_toml(config_path)
    )

    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if log_dir is not None:
        config.logging.log_dir = log_dir
    if log_level is not None:
        config.logging.default_level = log_level.upper()

    init_logging(config.logging, 'signaling.log')

    asyncio.run(serve(config))
