"""WebRTC transport for the relay.

* [`PeerChannel`][gamerelay.p2p.connection.PeerChannel] wraps one
  [aiortc](https://aiortc.readthedocs.io/){target=_blank} peer connection
  with a single data channel and exposes the event interface the relay core
  consumes.
* [`WebRTCTransport`][gamerelay.p2p.transport.WebRTCTransport] answers
  offers forwarded by a [signaling server][gamerelay.signaling] and yields a
  channel per inbound connection.
"""
from __future__ import annotations
