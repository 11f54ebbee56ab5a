from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Tuple
import socket
import threading


class Phase(Enum):
    """Where a session is in the protocol. Only ever moves forward."""
    PASSWORD_WAIT = 1
    LOGIN_WAIT = 2
    CHATTING = 3
    CLOSED = 4


@dataclass
class BroadcastRecord:
    """
    One line waiting in the queue to be fanned out.

    `seq` is filled in by the queue at enqueue time.
    """
    sender: str
    body: str
    seq: int = 0

    def render(self) -> str:
        return f"{self.sender}: {self.body}"


@dataclass(eq=False)
class ClientSession:
    """
    Per-connection state, kept only in memory.

    The handler thread owns this object. The registry only keeps a reference
    so the dispatcher can find it, and every write goes through `write_lock`
    so a broadcast and a protocol reply never interleave mid-line.
    """
    sock: socket.socket
    addr: Tuple[Any, ...] = ()
    session_id: int = 0
    phase: Phase = Phase.PASSWORD_WAIT
    attempts: int = 0
    username: str = ""
    left_announced: bool = False
    write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def advance(self, new_phase: Phase) -> None:
        """
        Move to `new_phase`.

        CLOSED is reachable from anywhere; otherwise only the next phase is
        allowed. Anything else is a bug in the caller.
        """
        if new_phase is Phase.CLOSED or new_phase.value == self.phase.value + 1:
            self.phase = new_phase
            return
        raise ValueError(f"illegal transition {self.phase.name} -> {new_phase.name}")

    def label(self) -> str:
        if self.username:
            return f"#{self.session_id} '{self.username}' {self.addr}"
        return f"#{self.session_id} {self.addr}"

    def hangup(self) -> None:
        """Wake up anything blocked on this socket without releasing the fd."""
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def release(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass
