"""Registry of admitted sessions keyed by identity."""
from __future__ import annotations

from gamerelay.session import Lifecycle
from gamerelay.session import Session


class SessionRegistry:
    """Maps each identity to its current session.

    The registry holds the admitted session of an identity from admission
    until teardown, so it contains sessions that are still connecting as well
    as open ones. Listings follow insertion order.

    Warning:
        The registry performs no locking. It is owned by a
        [`RelayCore`][gamerelay.relay.RelayCore] and must only be mutated by
        its dispatcher.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def __contains__(self, identity: object) -> bool:
        return identity in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def add_session(self, session: Session) -> Session | None:
        """Store a session as the current one for its identity.

        Returns:
            The session previously stored for the identity, if any. The
            caller is responsible for tearing it down.
        """
        previous = self._sessions.pop(session.identity, None)
        self._sessions[session.identity] = session
        return previous if previous is not session else None

    def get_session(self, identity: str) -> Session | None:
        """Get the current session of an identity."""
        return self._sessions.get(identity, None)

    def get_sessions(self) -> list[Session]:
        """Get all sessions, connecting or open."""
        return list(self._sessions.values())

    def get_open_sessions(self) -> list[Session]:
        """Get sessions whose lifecycle is open."""
        return [
            session
            for session in self._sessions.values()
            if session.lifecycle is Lifecycle.OPEN
        ]

    def is_current(self, session: Session) -> bool:
        """Check if `session` is the stored session of its identity."""
        return self._sessions.get(session.identity) is session

    def remove_session(self, session: Session) -> bool:
        """Remove a session if it is still the one stored for its identity.

        A displaced session never removes the session that replaced it.

        Returns:
            If the session was removed.
        """
        if self.is_current(session):
            del self._sessions[session.identity]
            return True
        return False
