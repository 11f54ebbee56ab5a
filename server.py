import argparse
import logging
import signal
import socket
import sys
import threading
from typing import Optional, Set, Tuple

from codec import PROMPT_PASSWORD, LineReader
from commands import handle_record
from config import ServerConfig, load_server_config
from dispatcher import dispatch_loop
from models import ClientSession, Phase
from state import ServerState, end_session, log, logger, send_line

ACCEPT_POLL = 0.5
LOG_FORMAT = "[SERVER] %(asctime)s %(levelname)s (%(threadName)s) %(message)s"


def handle_client(state: ServerState, session: ClientSession) -> None:
    """
    One thread per client. Handles:
    - password prompt / retries
    - LOGIN handshake
    - chat loop
    - cleanup on disconnect, QUIT or server shutdown
    """
    log(f"Incoming connection from {session.addr}")
    reader = LineReader(session.sock)

    try:
        send_line(session, PROMPT_PASSWORD)

        while session.phase is not Phase.CLOSED:
            line = reader.read_record()
            if line is None:
                log(f"{session.label()} hung up")
                break
            handle_record(state, session, line)

    except OSError as e:
        log(f"Connection error on {session.label()}: {e}")

    except Exception:
        logger.exception("Exception in client handler %s", session.label())

    finally:
        # A dropped chatter counts as an implicit QUIT.
        end_session(state, session)
        session.release()
        state.registry.remove(session.session_id)
        log(f"Connection from {session.addr} closed")


class ChatServer:
    """
    Owns the listening socket, the dispatcher thread and the acceptor thread.

    start() binds and spins everything up; shutdown() takes it all down in
    order: stop accepting, close the queue, let the dispatcher drain, hang
    up every session, wait for the workers.
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.state = ServerState(password=config.password, max_attempts=config.max_attempts)

        self._listener: Optional[socket.socket] = None
        self._accepting = threading.Event()
        self._stop_requested = threading.Event()
        self._stopped = threading.Event()
        self._shutdown_lock = threading.Lock()

        self._acceptor: Optional[threading.Thread] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._handlers: Set[threading.Thread] = set()
        self._handlers_lock = threading.Lock()

    @property
    def address(self) -> Tuple[str, int]:
        """Where we are actually listening (useful with port 0)."""
        if self._listener is None:
            raise RuntimeError("server not started")
        return self._listener.getsockname()[:2]

    @property
    def dispatcher_alive(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def start(self) -> None:
        """Bind and listen. Raises OSError if the port can't be had."""
        srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            srv.bind((self.config.host, self.config.port))
            srv.listen(self.config.backlog)
        except OSError:
            srv.close()
            raise

        # Short accept timeout so the acceptor notices shutdown.
        srv.settimeout(ACCEPT_POLL)
        self._listener = srv
        self._accepting.set()

        self._dispatcher = threading.Thread(
            target=dispatch_loop, args=(self.state,), name="dispatcher", daemon=True,
        )
        self._dispatcher.start()

        self._acceptor = threading.Thread(
            target=self._accept_loop, name="acceptor", daemon=True,
        )
        self._acceptor.start()

        host, port = self.address
        log(f"Server listening on {host}:{port}")

    def _accept_loop(self) -> None:
        while self._accepting.is_set():
            try:
                conn, addr = self._listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._accepting.is_set():
                    log(f"accept failed: {e}", logging.ERROR)
                    self.request_stop()
                break
            self._admit(conn, addr)

    def _admit(self, conn: socket.socket, addr) -> None:
        conn.settimeout(None)
        session = ClientSession(sock=conn, addr=addr)
        self.state.registry.insert(session)

        t = threading.Thread(
            target=handle_client,
            args=(self.state, session),
            name=f"session-{session.session_id}",
            daemon=True,
        )
        try:
            t.start()
        except RuntimeError as e:
            log(f"Could not start handler for {addr}: {e}", logging.WARNING)
            self.state.registry.remove(session.session_id)
            session.release()
            return

        with self._handlers_lock:
            self._handlers = {h for h in self._handlers if h.is_alive()}
            self._handlers.add(t)

    def request_stop(self) -> None:
        """Signal-safe: just flags serve_forever() to shut down."""
        self._stop_requested.set()

    def serve_forever(self) -> None:
        # Poll so signal handlers get a chance to run in the main thread.
        while not self._stop_requested.wait(ACCEPT_POLL):
            pass
        self.shutdown()

    def shutdown(self) -> None:
        with self._shutdown_lock:
            if self._stopped.is_set() or self._listener is None:
                return

            self._accepting.clear()
            if self._acceptor is not None and self._acceptor is not threading.current_thread():
                self._acceptor.join()
            self._listener.close()

            # Whatever is already queued still goes out to whoever is connected.
            self.state.queue.close()
            self._dispatcher.join(self.config.shutdown_grace)

            for session in self.state.registry.snapshot_all():
                session.hangup()

            self._dispatcher.join()

            with self._handlers_lock:
                handlers = list(self._handlers)
            for t in handlers:
                t.join(self.config.shutdown_grace)

            self._stop_requested.set()
            self._stopped.set()
            log("Server shutting down")

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)


def main(argv=None) -> int:
    """
    chat-server [port]

    Exit status 0 after a clean shutdown, 1 if we couldn't start.
    """
    parser = argparse.ArgumentParser(prog="chat-server", description="Password-gated TCP chat server")
    parser.add_argument("port", nargs="?", type=int, help="TCP port (default: CHAT_PORT or 12345)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        config = load_server_config(args.port)
        logging.getLogger().setLevel(config.log_level)
    except ValueError as e:
        log(f"Bad configuration: {e}", logging.ERROR)
        return 1

    server = ChatServer(config)
    try:
        server.start()
    except OSError as e:
        log(f"Could not listen on {config.host}:{config.port}: {e}", logging.ERROR)
        return 1

    def _on_signal(signum, frame):
        log(f"Got signal {signum}, shutting down")
        server.request_stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    server.serve_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
