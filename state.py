import logging
from dataclasses import dataclass, field

from codec import (
    MAX_BODY,
    MAX_USERNAME,
    SERVER_NAME,
    clip,
    encode_record,
    error_record,
)
from config import MAX_PASSWORD_ATTEMPTS
from message_queue import MessageQueue
from models import BroadcastRecord, ClientSession, Phase
from registry import ClientRegistry

logger = logging.getLogger("chat")


@dataclass
class ServerState:
    """
    Everything the workers share, in one place.

    Handed by reference to every session thread and to the dispatcher.
    The registry and the queue each carry their own lock.
    """
    password: str
    max_attempts: int = MAX_PASSWORD_ATTEMPTS
    registry: ClientRegistry = field(default_factory=ClientRegistry)
    queue: MessageQueue = field(default_factory=MessageQueue)


# --- Small helpers ---

def log(msg: str, level: int = logging.INFO) -> None:
    """Tiny logger so server output stays easy to grep."""
    logger.log(level, msg)


def send_line(session: ClientSession, line: str) -> bool:
    """
    Write one record to the session, serialized with any other writer.

    Failures are logged and swallowed; the return value says whether the
    record went out.
    """
    with session.write_lock:
        return send_line_locked(session, line)


def send_line_locked(session: ClientSession, line: str) -> bool:
    """Same as send_line, for callers already holding `session.write_lock`."""
    try:
        session.sock.sendall(encode_record(line))
        return True
    except OSError as e:
        log(f"Failed to send to {session.label()}: {e}", logging.DEBUG)
        return False


def send_err(session: ClientSession, reason: str) -> bool:
    return send_line(session, error_record(reason))


# --- Broadcasts ---

def publish(state: ServerState, sender: str, body: str) -> bool:
    """Queue one broadcast. Returns False once the server is shutting down."""
    record = BroadcastRecord(
        sender=clip(sender, MAX_USERNAME),
        body=clip(body.replace("\n", " "), MAX_BODY),
    )
    return state.queue.put(record)


def announce_join(state: ServerState, session: ClientSession) -> None:
    publish(state, SERVER_NAME, f"*** {session.username} has joined the chat ***")


def announce_leave(state: ServerState, session: ClientSession) -> None:
    """Queue the leave line, at most once per session."""
    if session.left_announced:
        return
    session.left_announced = True
    publish(state, SERVER_NAME, f"*** {session.username} has left the chat ***")


def end_session(state: ServerState, session: ClientSession) -> None:
    """
    Drive a session to CLOSED.

    Safe to call more than once. A chatting session gets its leave line
    queued before it drops out of the registry.
    """
    if session.phase is Phase.CLOSED:
        return
    if session.phase is Phase.CHATTING:
        announce_leave(state, session)
        log(f"User '{session.username}' left")
    state.registry.mark_closed(session)
