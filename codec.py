"""
Line-record framing for the chat protocol.

Every record is `TAG` or `TAG:payload` followed by a single LF. There is no
escaping and no length prefix, so the only framing state is whatever bytes
have arrived since the last LF.
"""
import socket
from collections import deque
from typing import Deque, List, Optional, Tuple

ENCODING = "utf-8"
# surrogateescape keeps decode/encode byte-exact for non-UTF-8 input.
ERRORS = "surrogateescape"

MAX_USERNAME = 31
MAX_BODY = 1023
MAX_TAG = 64
MAX_RECORD = MAX_TAG + MAX_BODY  # 1087
RECV_SIZE = 4096

# client -> server
TAG_PASS = "PASS"
TAG_LOGIN = "LOGIN"
TAG_MSG = "MSG"
TAG_QUIT = "QUIT"

# server -> client
PROMPT_PASSWORD = "PASSWORD:"
REPLY_OKPASS = "OKPASS"
REPLY_OK = "OK"
ERR_PREFIX = "ERR:"

SERVER_NAME = "Server"


class RecordDecoder:
    """
    Per-connection accumulator.

    Feed it whatever recv() returned; it hands back every complete record
    (without the LF) and keeps the unfinished tail for the next call.
    Records longer than MAX_RECORD are cut at MAX_RECORD and the rest of the
    line is dropped.
    """

    def __init__(self, limit: int = MAX_RECORD) -> None:
        self.limit = limit
        self._buf = bytearray()
        self._discarding = False

    def feed(self, data: bytes) -> List[bytes]:
        records: List[bytes] = []
        start = 0
        while True:
            idx = data.find(b"\n", start)
            end = len(data) if idx < 0 else idx

            if not self._discarding:
                piece = data[start:end]
                room = self.limit - len(self._buf)
                if len(piece) > room:
                    piece = piece[:room]
                    self._discarding = True
                self._buf.extend(piece)

            if idx < 0:
                break

            records.append(bytes(self._buf))
            self._buf.clear()
            self._discarding = False
            start = idx + 1

        return records

    def pending(self) -> int:
        """Bytes buffered towards the next record."""
        return len(self._buf)


class LineReader:
    """
    Pulls records off a socket one at a time.

    read_record() returns the next record as text, or None once the peer has
    closed. Socket errors propagate to the caller.
    """

    def __init__(self, sock: socket.socket, decoder: Optional[RecordDecoder] = None) -> None:
        self.sock = sock
        self.decoder = decoder or RecordDecoder()
        self._ready: Deque[bytes] = deque()

    def read_record(self) -> Optional[str]:
        while not self._ready:
            data = self.sock.recv(RECV_SIZE)
            if not data:
                return None
            self._ready.extend(self.decoder.feed(data))
        return decode(self._ready.popleft())


def decode(raw: bytes) -> str:
    return raw.decode(ENCODING, ERRORS)


def byte_len(text: str) -> int:
    return len(text.encode(ENCODING, ERRORS))


def clip(text: str, limit: int) -> str:
    """Cut `text` so its encoded form is at most `limit` bytes."""
    raw = text.encode(ENCODING, ERRORS)
    if len(raw) <= limit:
        return text
    return raw[:limit].decode(ENCODING, ERRORS)


def parse_record(line: str) -> Tuple[str, Optional[str]]:
    """
    Split 'TAG:payload' into (tag, payload).

    payload is None when there is no ':' at all, and '' for 'TAG:'.
    """
    if ":" not in line:
        return line, None
    tag, payload = line.split(":", 1)
    return tag, payload


def encode_record(line: str) -> bytes:
    """Serialize one outgoing record. Embedded LFs would break framing, so they go."""
    return line.replace("\n", " ").encode(ENCODING, ERRORS) + b"\n"


def error_record(reason: str) -> str:
    return f"{ERR_PREFIX}{reason}"
