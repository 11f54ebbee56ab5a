import logging

from codec import (
    MAX_USERNAME,
    PROMPT_PASSWORD,
    REPLY_OK,
    REPLY_OKPASS,
    TAG_LOGIN,
    TAG_MSG,
    TAG_PASS,
    TAG_QUIT,
    byte_len,
    parse_record,
)
from models import ClientSession, Phase
from registry import ClaimResult
from state import (
    ServerState,
    announce_join,
    end_session,
    log,
    publish,
    send_err,
    send_line,
    send_line_locked,
)


# --- PASSWORD_WAIT ---

def cmd_pass(state: ServerState, session: ClientSession, tag: str, payload) -> None:
    """
    PASS:<password>

    Five wrong tries and the session is done. Anything other than PASS
    counts as a wrong try too.
    """
    if tag == TAG_PASS and payload == state.password:
        send_line(session, REPLY_OKPASS)
        session.advance(Phase.LOGIN_WAIT)
        return

    session.attempts += 1
    if tag != TAG_PASS:
        send_err(session, "Expected PASS:<password>")
    else:
        send_err(session, "Bad password")

    if session.attempts >= state.max_attempts:
        log(f"{session.label()} ran out of password attempts", logging.WARNING)
        send_err(session, "Too many attempts")
        end_session(state, session)
        return

    send_line(session, PROMPT_PASSWORD)


# --- LOGIN_WAIT ---

def cmd_login(state: ServerState, session: ClientSession, tag: str, payload) -> None:
    """
    LOGIN:<username>

    One shot: every failure here ends the session.
    """
    if tag != TAG_LOGIN:
        reject_login(state, session, "Invalid login")
        return

    username = payload or ""
    if not username:
        reject_login(state, session, "Empty username")
        return
    if byte_len(username) > MAX_USERNAME:
        reject_login(state, session, "Invalid login")
        return

    # Hold the write lock from the claim until OK is out: once CHATTING, the
    # dispatcher may write to us, and nothing may land ahead of OK.
    with session.write_lock:
        result = state.registry.claim_username(session.session_id, username)
        if result is ClaimResult.OK:
            log(f"User '{username}' logged in from {session.addr}")
            send_line_locked(session, REPLY_OK)

    if result is ClaimResult.TAKEN:
        reject_login(state, session, "Username taken")
        return
    if result is ClaimResult.INVALID:
        reject_login(state, session, "Invalid login")
        return

    announce_join(state, session)


def reject_login(state: ServerState, session: ClientSession, reason: str) -> None:
    log(f"{session.label()} login rejected: {reason}", logging.WARNING)
    send_err(session, reason)
    end_session(state, session)


# --- CHATTING ---

def cmd_msg(state: ServerState, session: ClientSession, body: str) -> None:
    """MSG:<text> -> '<username>: <text>' to everyone, sender included."""
    publish(state, session.username, body)


def cmd_quit(state: ServerState, session: ClientSession) -> None:
    end_session(state, session)


# --- Router ---

def handle_record(state: ServerState, session: ClientSession, line: str) -> None:
    """Feed one inbound record through the session's state machine."""
    tag, payload = parse_record(line)

    if session.phase is Phase.PASSWORD_WAIT:
        cmd_pass(state, session, tag, payload)

    elif session.phase is Phase.LOGIN_WAIT:
        cmd_login(state, session, tag, payload)

    elif session.phase is Phase.CHATTING:
        if tag == TAG_MSG and payload is not None:
            cmd_msg(state, session, payload)
        elif tag == TAG_QUIT:
            cmd_quit(state, session)
        else:
            send_err(session, "Unknown command")

    # CLOSED: nothing left to do; the handler loop stops reading.
