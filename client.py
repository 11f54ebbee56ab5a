import argparse
import getpass
import socket
import sys
import threading
from typing import Callable, Iterable, Optional

from codec import (
    ERR_PREFIX,
    MAX_BODY,
    PROMPT_PASSWORD,
    REPLY_OK,
    REPLY_OKPASS,
    TAG_LOGIN,
    TAG_MSG,
    TAG_PASS,
    TAG_QUIT,
    clip,
)
from config import MAX_PASSWORD_ATTEMPTS, default_client_port

QUIT_COMMANDS = ("/quit", "/exit")


def send_line(wfile, line: str) -> bool:
    """Send a raw line to the server."""
    try:
        wfile.write(line + "\n")
        wfile.flush()
        return True
    except (OSError, ValueError) as e:
        print(f"Send failed: {e}")
        return False


def read_line(rfile) -> Optional[str]:
    """Next server record without its LF, or None if the server went away."""
    try:
        raw = rfile.readline()
    except (OSError, ValueError):
        return None
    if not raw:
        return None
    return raw.rstrip("\n")


def password_phase(rfile, wfile, ask: Optional[Callable[[str], str]] = None,
                   out: Callable[[str], None] = print) -> bool:
    """
    Answer PASSWORD: prompts until the server says OKPASS.

    Gives up after the server has rejected MAX_PASSWORD_ATTEMPTS tries.
    """
    failures = 0
    while failures < MAX_PASSWORD_ATTEMPTS:
        line = read_line(rfile)
        if line is None:
            out("[Disconnected from server]")
            return False

        if line == PROMPT_PASSWORD:
            pw = (ask or getpass.getpass)("Password: ")
            if not send_line(wfile, f"{TAG_PASS}:{pw}"):
                return False
        elif line == REPLY_OKPASS:
            return True
        elif line.startswith(ERR_PREFIX):
            out(f"Server: {line[len(ERR_PREFIX):]}")
            failures += 1
        else:
            out(f"Unexpected reply: {line}")
            return False

    # Server follows the last rejection with ERR:Too many attempts.
    line = read_line(rfile)
    if line is not None and line.startswith(ERR_PREFIX):
        out(f"Server: {line[len(ERR_PREFIX):]}")
    return False


def login_phase(rfile, wfile, username: str, out: Callable[[str], None] = print) -> bool:
    if not send_line(wfile, f"{TAG_LOGIN}:{username}"):
        return False
    line = read_line(rfile)
    if line == REPLY_OK:
        out(f"[Connected to chat as '{username}']")
        return True
    if line is None:
        out("[Disconnected from server]")
    elif line.startswith(ERR_PREFIX):
        out(f"Server: {line[len(ERR_PREFIX):]}")
    else:
        out(f"Server response: {line}")
    return False


def receiver_loop(rfile, disconnected: threading.Event, quitting: threading.Event,
                  out: Callable[[str], None] = print) -> None:
    """Background thread, prints anything the server sends."""
    try:
        while True:
            line = read_line(rfile)
            if line is None:
                break
            out(line)
    finally:
        disconnected.set()
        if not quitting.is_set():
            out("[Disconnected from server]")


def writer_loop(wfile, lines: Iterable[str], disconnected: threading.Event,
                quitting: threading.Event) -> int:
    """
    Wrap every terminal line in MSG:, or send QUIT on /quit, /exit or EOF.

    Returns the process exit status.
    """
    for raw in lines:
        if disconnected.is_set():
            return 1
        text = raw.rstrip("\r\n")
        if text.startswith(QUIT_COMMANDS):
            quitting.set()
            send_line(wfile, TAG_QUIT)
            return 0
        if not send_line(wfile, f"{TAG_MSG}:{clip(text, MAX_BODY)}"):
            return 1

    if disconnected.is_set():
        return 1
    quitting.set()
    send_line(wfile, TAG_QUIT)
    return 0


def chat_loop(wfile, lines: Iterable[str], disconnected: threading.Event,
              quitting: threading.Event) -> int:
    """
    Run writer_loop on a daemon thread and wait for it or for the server to drop.

    A blocked terminal read cannot be interrupted, so the writer is left
    behind when the connection goes away first.
    """
    finished = threading.Event()
    status = [1]

    def run():
        try:
            status[0] = writer_loop(wfile, lines, disconnected, quitting)
        finally:
            finished.set()

    threading.Thread(target=run, daemon=True).start()

    # Short waits keep Ctrl-C deliverable to this thread.
    while not finished.is_set() and not disconnected.is_set():
        finished.wait(0.1)

    if finished.is_set():
        return status[0]
    return 0 if quitting.is_set() else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="chat-client", description="Terminal client for the chat server")
    parser.add_argument("server_ip", help="IPv4 address of the server")
    parser.add_argument("port", nargs="?", type=int, help="TCP port (default: CHAT_PORT or 12345)")
    args = parser.parse_args(argv)

    try:
        port = args.port if args.port is not None else default_client_port()
        sock = socket.create_connection((args.server_ip, port))
    except (OSError, ValueError) as e:
        print(f"Failed to connect: {e}")
        return 1

    rfile = sock.makefile("r", encoding="utf-8", newline="\n", errors="replace")
    wfile = sock.makefile("w", encoding="utf-8", newline="\n", errors="replace")
    disconnected = threading.Event()
    quitting = threading.Event()

    try:
        if not password_phase(rfile, wfile):
            return 1

        username = input("Enter username: ").strip()
        if not username:
            print("Empty username")
            return 1
        if not login_phase(rfile, wfile, username):
            return 1

        t = threading.Thread(
            target=receiver_loop,
            args=(rfile, disconnected, quitting),
            daemon=True,
        )
        t.start()

        try:
            return chat_loop(wfile, sys.stdin, disconnected, quitting)
        except KeyboardInterrupt:
            if disconnected.is_set():
                return 1
            quitting.set()
            send_line(wfile, TAG_QUIT)
            return 0

    except (EOFError, KeyboardInterrupt):
        return 1

    finally:
        quitting.set()
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass
        print("Closed connection")


if __name__ == "__main__":
    sys.exit(main())
