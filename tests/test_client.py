import io
import os
import threading
import time

import pytest

import client
from client import chat_loop, login_phase, password_phase, receiver_loop, writer_loop

from conftest import PASSWORD


class Collector:
    def __init__(self):
        self.lines = []

    def __call__(self, line):
        self.lines.append(line)


def test_password_accepted_first_try():
    rfile = io.StringIO("PASSWORD:\nOKPASS\n")
    wfile = io.StringIO()
    out = Collector()
    assert password_phase(rfile, wfile, ask=lambda prompt: PASSWORD, out=out)
    assert wfile.getvalue() == f"PASS:{PASSWORD}\n"
    assert out.lines == []


def test_password_retry_then_accept():
    rfile = io.StringIO("PASSWORD:\nERR:Bad password\nPASSWORD:\nOKPASS\n")
    wfile = io.StringIO()
    answers = iter(["nope", PASSWORD])
    out = Collector()
    assert password_phase(rfile, wfile, ask=lambda prompt: next(answers), out=out)
    assert wfile.getvalue() == f"PASS:nope\nPASS:{PASSWORD}\n"
    assert out.lines == ["Server: Bad password"]


def test_password_gives_up_after_five():
    server_says = "PASSWORD:\nERR:Bad password\n" * 5 + "ERR:Too many attempts\n"
    wfile = io.StringIO()
    out = Collector()
    assert not password_phase(io.StringIO(server_says), wfile, ask=lambda p: "x", out=out)
    assert wfile.getvalue().count("PASS:x\n") == 5
    assert out.lines[-1] == "Server: Too many attempts"


def test_password_server_hangs_up():
    out = Collector()
    assert not password_phase(io.StringIO(""), io.StringIO(), ask=lambda p: "x", out=out)
    assert out.lines == ["[Disconnected from server]"]


def test_login_ok():
    wfile = io.StringIO()
    out = Collector()
    assert login_phase(io.StringIO("OK\n"), wfile, "alice", out=out)
    assert wfile.getvalue() == "LOGIN:alice\n"
    assert out.lines == ["[Connected to chat as 'alice']"]


def test_login_rejected():
    out = Collector()
    assert not login_phase(io.StringIO("ERR:Username taken\n"), io.StringIO(), "alice", out=out)
    assert out.lines == ["Server: Username taken"]


@pytest.mark.parametrize("command", ["/quit", "/exit", "/quit now"])
def test_writer_wraps_lines_and_quits(command):
    wfile = io.StringIO()
    quitting = threading.Event()
    code = writer_loop(wfile, ["hello\n", "\n", command + "\n", "never sent\n"],
                       threading.Event(), quitting)
    assert code == 0
    assert quitting.is_set()
    assert wfile.getvalue() == "MSG:hello\nMSG:\nQUIT\n"


def test_writer_sends_quit_on_eof():
    wfile = io.StringIO()
    assert writer_loop(wfile, ["bye\n"], threading.Event(), threading.Event()) == 0
    assert wfile.getvalue() == "MSG:bye\nQUIT\n"


def test_writer_stops_when_disconnected():
    wfile = io.StringIO()
    gone = threading.Event()
    gone.set()
    assert writer_loop(wfile, ["hello\n"], gone, threading.Event()) == 1
    assert wfile.getvalue() == ""


def test_receiver_prints_until_eof():
    out = Collector()
    disconnected = threading.Event()
    receiver_loop(io.StringIO("alice: hi\nServer: *** bob has joined the chat ***\n"),
                  disconnected, threading.Event(), out=out)
    assert out.lines == [
        "alice: hi",
        "Server: *** bob has joined the chat ***",
        "[Disconnected from server]",
    ]
    assert disconnected.is_set()


def test_receiver_quiet_when_quitting():
    out = Collector()
    quitting = threading.Event()
    quitting.set()
    receiver_loop(io.StringIO(""), threading.Event(), quitting, out=out)
    assert out.lines == []


def test_chat_loop_returns_writer_status():
    wfile = io.StringIO()
    quitting = threading.Event()
    assert chat_loop(wfile, ["hi\n", "/quit\n"], threading.Event(), quitting) == 0
    assert wfile.getvalue() == "MSG:hi\nQUIT\n"


def test_chat_loop_exits_while_terminal_read_blocks():
    r, w = os.pipe()
    disconnected = threading.Event()
    timer = threading.Timer(0.3, disconnected.set)
    with os.fdopen(r, "r") as lines:
        try:
            timer.start()
            started = time.monotonic()
            assert chat_loop(io.StringIO(), lines, disconnected, threading.Event()) == 1
            assert time.monotonic() - started < 2.0
        finally:
            timer.cancel()
            # EOF releases the writer thread still parked on the read end.
            os.close(w)


def test_main_connection_refused(monkeypatch, capsys):
    def refuse(address):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(client.socket, "create_connection", refuse)
    assert client.main(["127.0.0.1", "1"]) == 1
    assert "Failed to connect" in capsys.readouterr().out


def test_main_against_live_server(server, monkeypatch, capsys):
    host, port = server.address
    answers = iter(["alice"])
    monkeypatch.setattr(client.getpass, "getpass", lambda prompt="": PASSWORD)
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
    monkeypatch.setattr(client.sys, "stdin", io.StringIO("hello\n/quit\n"))

    assert client.main([host, str(port)]) == 0
    out = capsys.readouterr().out
    assert "[Connected to chat as 'alice']" in out
    assert "Closed connection" in out
