"""Real-time state relay for small peer-to-peer multiplayer games."""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('gamerelay')
