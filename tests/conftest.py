import socket

import pytest

from config import ServerConfig
from models import ClientSession
from server import ChatServer
from state import ServerState

PASSWORD = "secret"
TIMEOUT = 5.0


class Peer:
    """Raw test client: one socket, line-at-a-time reads with a timeout."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.sock.settimeout(TIMEOUT)
        self._buf = b""

    @classmethod
    def connect(cls, address):
        return cls(socket.create_connection(address, timeout=TIMEOUT))

    def send(self, data: str) -> None:
        self.sock.sendall(data.encode())

    def recv_line(self):
        """Next line without LF, or None on EOF."""
        while b"\n" not in self._buf:
            try:
                chunk = self.sock.recv(4096)
            except ConnectionResetError:
                chunk = b""
            if not chunk:
                return None
            self._buf += chunk
        line, self._buf = self._buf.split(b"\n", 1)
        return line.decode()

    def expect(self, line: str) -> None:
        got = self.recv_line()
        assert got == line

    def expect_eof(self, allowed=()) -> None:
        """Read until EOF, tolerating only lines in `allowed`."""
        while True:
            got = self.recv_line()
            if got is None:
                return
            assert got in allowed

    def login(self, name: str, password: str = PASSWORD) -> None:
        self.expect("PASSWORD:")
        self.send(f"PASS:{password}\n")
        self.expect("OKPASS")
        self.send(f"LOGIN:{name}\n")
        self.expect("OK")
        # Our own join line proves the dispatcher has caught up with us.
        self.expect(f"Server: *** {name} has joined the chat ***")

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


@pytest.fixture
def state():
    return ServerState(password=PASSWORD)


@pytest.fixture
def make_session(state):
    """ClientSession on one end of a socketpair, registered; returns (session, Peer)."""
    made = []

    def _make():
        a, b = socket.socketpair()
        session = ClientSession(sock=a, addr=("test", len(made)))
        state.registry.insert(session)
        peer = Peer(b)
        made.append((session, peer))
        return session, peer

    yield _make

    for session, peer in made:
        session.release()
        peer.close()


@pytest.fixture
def server():
    srv = ChatServer(ServerConfig(host="127.0.0.1", port=0, password=PASSWORD, shutdown_grace=1.0))
    srv.start()
    yield srv
    srv.shutdown()


@pytest.fixture
def connect(server):
    peers = []

    def _connect():
        peer = Peer.connect(server.address)
        peers.append(peer)
        return peer

    yield _connect

    for peer in peers:
        peer.close()
