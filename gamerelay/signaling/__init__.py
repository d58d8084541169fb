"""Signaling server and client.

Peers (the relay and every game client) register with the signaling server
under a name and UUID. The server forwards WebRTC session descriptions
between registered peers so they can open a direct data channel, after
which the signaling server is no longer involved.
"""
from __future__ import annotations
