"""Shared helpers used across the relay and signaling packages."""
from __future__ import annotations
