import threading
from enum import Enum
from typing import Dict, List, Set

from codec import MAX_USERNAME, SERVER_NAME, byte_len
from models import ClientSession, Phase


class ClaimResult(Enum):
    OK = "ok"
    TAKEN = "taken"
    INVALID = "invalid"


def valid_username(name: str) -> bool:
    """Non-empty, at most MAX_USERNAME bytes, printable ASCII only."""
    if not name or byte_len(name) > MAX_USERNAME:
        return False
    return all(" " <= ch <= "~" for ch in name)


class ClientRegistry:
    """
    Every connected session, keyed by session id, plus the set of usernames
    currently in CHATTING.

    All mutation happens under `_lock`. A name is in `_names` exactly while
    its session is CHATTING.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[int, ClientSession] = {}
        self._names: Set[str] = set()
        self._next_id = 1

    def insert(self, session: ClientSession) -> int:
        with self._lock:
            session_id = self._next_id
            self._next_id += 1
            session.session_id = session_id
            self._sessions[session_id] = session
        return session_id

    def remove(self, session_id: int) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None and session.phase is Phase.CHATTING:
                self._names.discard(session.username)

    def claim_username(self, session_id: int, name: str) -> ClaimResult:
        """
        Atomically reserve `name` and move the session to CHATTING.

        The reserved sender name used for announcements counts as taken.
        """
        if not valid_username(name):
            return ClaimResult.INVALID

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.phase is not Phase.LOGIN_WAIT:
                return ClaimResult.INVALID
            if name == SERVER_NAME or name in self._names:
                return ClaimResult.TAKEN
            session.advance(Phase.CHATTING)
            session.username = name
            self._names.add(name)

        return ClaimResult.OK

    def mark_closed(self, session: ClientSession) -> None:
        """Move a session to CLOSED and free its name in one step."""
        with self._lock:
            if session.phase is Phase.CHATTING:
                self._names.discard(session.username)
            session.advance(Phase.CLOSED)

    def snapshot_chatting(self) -> List[ClientSession]:
        """Point-in-time copy of the CHATTING sessions, in session id order."""
        with self._lock:
            return [s for s in self._sessions.values() if s.phase is Phase.CHATTING]

    def snapshot_all(self) -> List[ClientSession]:
        with self._lock:
            return list(self._sessions.values())

    def usernames(self) -> List[str]:
        with self._lock:
            return sorted(self._names)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
