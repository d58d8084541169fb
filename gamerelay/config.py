"""Relay and signaling server configuration file parsing."""
from __future__ import annotations

import logging
import pathlib
import sys

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from gamerelay.relay import DEFAULT_DEPARTURE_DELAY
from gamerelay.relay import DEFAULT_LIVENESS_INTERVAL
from gamerelay.utils.config import load


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        log_dir: Optional directory for rotating log files.
        default_level: Default logging level for the root logger.
        websockets_level: Log level for the `websockets` logger, which is
            much chattier than the rest of the application.
        aiortc_level: Log level for the `aiortc` and `aioice` loggers.
        current_player_interval: Optional seconds between logging the
            number of currently connected players (or peers, for the
            signaling server).
        current_player_limit: Max number of players for which the detailed
            list is also logged. If `None`, no detailed list is logged.
    """

    model_config = ConfigDict(extra='forbid')

    log_dir: str | None = None
    default_level: int | str = logging.INFO
    websockets_level: int | str = logging.WARNING
    aiortc_level: int | str = logging.WARNING
    current_player_interval: int | None = 60
    current_player_limit: int | None = 32


class SignalingConnectionConfig(BaseModel):
    """How the relay reaches the signaling server.

    Attributes:
        address: Signaling server address starting with `ws://` or `wss://`.
        name: Name the relay registers with.
        uuid: UUID the relay registers with. Game clients dial this UUID so
            it should be fixed in deployments. Generated if not set.
        timeout: Seconds to wait on the signaling server.
        verify_certificate: Verify the server's SSL certificate.
    """

    model_config = ConfigDict(extra='forbid')

    address: str = 'ws://localhost:8765'
    name: str = 'gamerelay'
    uuid: str | None = None
    timeout: float = 10
    verify_certificate: bool = True


class LivenessConfig(BaseModel):
    """Session liveness configuration.

    Attributes:
        interval: Seconds between connectivity checks of each session.
        departure_delay: Seconds to wait after a player disconnects before
            telling the other players.
    """

    model_config = ConfigDict(extra='forbid')

    interval: float = DEFAULT_LIVENESS_INTERVAL
    departure_delay: float = DEFAULT_DEPARTURE_DELAY


class RelayConfig(BaseModel):
    """Relay configuration.

    Attributes:
        signaling: Signaling server connection.
        liveness: Liveness checks.
        logging: Logging configuration.
    """

    model_config = ConfigDict(extra='forbid')

    signaling: SignalingConnectionConfig = Field(
        default_factory=SignalingConnectionConfig,
    )
    liveness: LivenessConfig = Field(default_factory=LivenessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="relay.toml"
            [signaling]
            address = "wss://signaling.example.com"
            name = "arena-relay"
            uuid = "9bb9b0a4-2b7c-4e47-9d2f-5b63e23b0b4b"

            [liveness]
            interval = 0.5
            departure_delay = 0.5

            [logging]
            log_dir = "/var/log/gamerelay"
            default_level = "INFO"
            ```

        Note:
            Omitted values are set to their defaults.
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)


class SignalingServingConfig(BaseModel):
    """Signaling server configuration.

    Attributes:
        host: Network interface the server binds to.
        port: Network port the server binds to.
        certfile: Certificate file (PEM format) used to enable TLS.
        keyfile: Private key file. If not specified, the key will be
            taken from the certfile.
        max_message_bytes: Maximum size in bytes of messages received by
            the server.
        logging: Logging configuration.
    """

    model_config = ConfigDict(extra='forbid')

    host: str | None = None
    port: int = 8765
    certfile: str | None = None
    keyfile: str | None = None
    max_message_bytes: int | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="signaling.toml"
            host = "0.0.0.0"
            port = 8765
            certfile = "/path/to/cert.pem"
            keyfile = "/path/to/privkey.pem"

            [logging]
            log_dir = "/var/log/gamerelay-signaling"
            ```
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)
