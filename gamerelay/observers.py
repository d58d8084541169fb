"""Observers notified about player lifecycle changes."""
from __future__ import annotations

import logging
from typing import Protocol
from typing import runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class RelayObserver(Protocol):
    """Receives human-facing notifications from the relay.

    Observers are called from the relay's dispatcher so they must not block.
    """

    def connected(self, identity: str) -> None:
        """A player's connection opened."""
        ...

    def disconnected(self, identity: str) -> None:
        """A player's session ended."""
        ...

    def diagnostic(self, message: str) -> None:
        """Something unusual happened that an operator may want to see."""
        ...


class LoggingObserver:
    """Observer that writes notifications to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def connected(self, identity: str) -> None:
        logger.log(self._level, f'Connected: {identity}')

    def disconnected(self, identity: str) -> None:
        logger.log(self._level, f'Disconnected: {identity}')

    def diagnostic(self, message: str) -> None:
        logger.warning(message)
