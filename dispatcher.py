import logging

from models import BroadcastRecord
from state import ServerState, log, send_line


def fan_out(state: ServerState, record: BroadcastRecord) -> int:
    """
    Write one record to every session that is CHATTING right now.

    Works off a snapshot, so a session leaving mid-way just gets a failed
    (and ignored) write. Returns how many writes went through.
    """
    line = record.render()
    delivered = 0
    for sess in state.registry.snapshot_chatting():
        if send_line(sess, line):
            delivered += 1
    return delivered


def dispatch_loop(state: ServerState) -> None:
    """
    The single consumer of the queue.

    Runs until the queue is closed and empty. Never removes sessions and
    never lets one bad record stop the loop.
    """
    log("Dispatcher started")
    while True:
        record = state.queue.get()
        if record is None:
            break
        try:
            delivered = fan_out(state, record)
            log(f"Dispatched #{record.seq} from {record.sender} to {delivered} session(s)",
                logging.DEBUG)
        except Exception as e:
            log(f"Dispatcher failed on record #{record.seq}: {e}", logging.ERROR)
    log("Dispatcher stopped")
