from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import signal
import uuid
from unittest import mock
from unittest.mock import AsyncMock

import click.testing
import pytest

from gamerelay.config import RelayConfig
from gamerelay.relay import RelayCore
from gamerelay.run import cli
from gamerelay.run import periodic_roster_logger
from gamerelay.run import serve
from gamerelay.session import Lifecycle
from gamerelay.session import Session
from testing.signaling_server import SignalingServerInfo
from testing.utils import wait_for_condition


@pytest.mark.asyncio()
async def test_periodic_roster_logger(caplog) -> None:
    caplog.set_level(logging.INFO)

    relay = RelayCore()
    for name in ('alice', 'bob'):
        relay.registry.add_session(
            Session(name, mock.MagicMock(), lifecycle=Lifecycle.OPEN),
        )
    relay.registry.add_session(Session('carol', mock.MagicMock()))

    task = periodic_roster_logger(relay, 0.001)
    await asyncio.sleep(0.01)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    assert any(
        'Connected players: 2 (alice, bob)' in record.message
        and record.levelname == 'INFO'
        for record in caplog.records
    )


@pytest.mark.asyncio()
async def test_periodic_roster_logger_limit(caplog) -> None:
    caplog.set_level(logging.INFO)

    relay = RelayCore()
    relay.registry.add_session(
        Session('alice', mock.MagicMock(), lifecycle=Lifecycle.OPEN),
    )

    task = periodic_roster_logger(relay, 0.001, limit=None)
    await asyncio.sleep(0.01)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    messages = [record.message for record in caplog.records]
    assert 'Connected players: 1' in messages
    assert not any('alice' in message for message in messages)


def test_invoke() -> None:
    runner = click.testing.CliRunner()
    with mock.patch(
        'gamerelay.run.serve',
        AsyncMock(),
    ) as mock_serve, mock.patch('gamerelay.run.init_logging') as mock_init:
        result = runner.invoke(cli)
        mock_serve.assert_awaited_once()

    assert result.exit_code == 0
    mock_init.assert_called_once()
    assert mock_init.call_args.args[1] == 'relay.log'
    (config,) = mock_serve.await_args.args
    assert config == RelayConfig()


def test_invoke_and_override_defaults(tmp_path: pathlib.Path) -> None:
    relay_uuid = str(uuid.uuid4())
    log_dir = str(tmp_path / 'log-dir')

    async def _mock_serve(config: RelayConfig) -> None:
        assert config.signaling.address == 'ws://example.com:1234'
        assert config.signaling.name == 'arena'
        assert config.signaling.uuid == relay_uuid
        assert config.logging.log_dir == log_dir
        assert config.logging.default_level == 'WARNING'

    options: list[str] = []
    options += ['--address', 'ws://example.com:1234']
    options += ['--name', 'arena']
    options += ['--uuid', relay_uuid]
    options += ['--log-dir', log_dir]
    options += ['--log-level', 'warning']

    runner = click.testing.CliRunner()
    with mock.patch(
        'gamerelay.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ) as mock_serve, mock.patch('gamerelay.run.init_logging'):
        result = runner.invoke(cli, options)
        mock_serve.assert_awaited_once()

    assert result.exit_code == 0


def test_invoke_with_config_file(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'relay.toml'
    filepath.write_text('[signaling]\nname = "from-file"\n')

    runner = click.testing.CliRunner()
    with mock.patch(
        'gamerelay.run.serve',
        AsyncMock(),
    ) as mock_serve, mock.patch('gamerelay.run.init_logging'):
        result = runner.invoke(cli, ['--config', str(filepath)])

    assert result.exit_code == 0
    (config,) = mock_serve.await_args.args
    assert config.signaling.name == 'from-file'


def test_invoke_with_bad_uuid() -> None:
    runner = click.testing.CliRunner()
    with mock.patch(
        'gamerelay.run.serve',
        AsyncMock(),
    ) as mock_serve, mock.patch('gamerelay.run.init_logging'):
        result = runner.invoke(cli, ['--uuid', 'not-a-uuid'])
        mock_serve.assert_not_awaited()

    assert result.exit_code == 2
    assert 'not a valid UUID' in result.output


@pytest.mark.timeout(10)
@pytest.mark.asyncio()
async def test_serve_until_signal(
    signaling_server: SignalingServerInfo,
) -> None:
    config = RelayConfig()
    config.signaling.address = signaling_server.address
    config.signaling.uuid = str(uuid.uuid4())
    peers = signaling_server.signaling_server.peers

    task = asyncio.create_task(serve(config))
    await wait_for_condition(lambda: len(peers) == 1)
    (peer,) = peers.get_peers()
    assert str(peer.uuid) == config.signaling.uuid
    assert peer.name == config.signaling.name

    os.kill(os.getpid(), signal.SIGINT)
    await asyncio.wait_for(task, timeout=5)

    await wait_for_condition(lambda: len(peers) == 0)
