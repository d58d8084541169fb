"""Utilities related to the current execution environment."""
from __future__ import annotations

import socket


def hostname() -> str:
    """Return current hostname."""
    return socket.gethostname()
