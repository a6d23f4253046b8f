"""Command-line entry point that starts the poller workers and its console."""

from __future__ import annotations

import argparse
import logging
import queue
import sqlite3
import sys
import threading
from datetime import datetime
from typing import Callable

from . import events
from .events import EventWriter, run_database_writer
from .pollertui import PollerConsole
from .pollio import DEFAULT_TCP_TARGET, PollerIO
from .points import DEFAULT_SERIAL_PORT, load_configuration
from .processor import run_state_processor
from .state import PollerState

EVENT_LOG_FILE = "poller_events.log"
DATABASE_LOG_FILE = "poller_database.log"
EVENT_QUEUE_SIZE = 100
WORKER_JOIN_TIMEOUT_S = 10.0


class _MicrosecondFormatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created).strftime("%Y/%m/%d %H:%M:%S.%f")


def _say(message: str) -> None:
    print(message, file=sys.stderr)


def _parse_args(argv):
    parser = argparse.ArgumentParser(description="Poll a Modbus slave and log its events.")
    parser.add_argument("-mode", "--mode", default="tcp",
                        help="Connection mode: 'tcp' or 'serial'")
    parser.add_argument("-target-tcp", "--target-tcp", dest="target_tcp",
                        default=DEFAULT_TCP_TARGET,
                        help="TCP target address (e.g., 127.0.0.1:5020)")
    parser.add_argument("-target-serial", "--target-serial", dest="target_serial",
                        default=DEFAULT_SERIAL_PORT,
                        help="Serial port (e.g., COM3 or /dev/ttyUSB0)")
    parser.add_argument("-db", "--db", default="poller.db",
                        help="Path to the main SQLite database file")
    return parser.parse_args(argv)


def _attach(logger: logging.Logger, path: str, prefix: str, attached: list) -> logging.Logger:
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(_MicrosecondFormatter(f"{prefix}%(asctime)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    attached.append((logger, handler))
    return logger


def _worker(name: str, target: Callable, *args, log: logging.Logger) -> threading.Thread:
    def body() -> None:
        try:
            target(*args)
        except Exception:
            log.exception("%s stopped with an error", name)

    thread = threading.Thread(target=body, name=name, daemon=True)
    thread.start()
    return thread


def _run(args, target: str, soe_log: logging.Logger) -> int:
    try:
        conn = sqlite3.connect(args.db)
    except sqlite3.Error as exc:
        _say(f"FATAL: Could not open database {args.db}: {exc}")
        return 1
    try:
        config = load_configuration(conn)
    except sqlite3.Error as exc:
        _say(
            f"FATAL: Could not load configuration from database: {exc}.\n"
            f"HINT: Please ensure '{args.db}' exists and is a valid poller database. "
            "You can create it using the 'modbus-db-init' tool."
        )
        return 1
    finally:
        conn.close()
    _say(f"Successfully loaded {len(config.points_by_name)} points from database.")

    event_queue: queue.Queue = queue.Queue(maxsize=EVENT_QUEUE_SIZE)
    state = PollerState(config, event_queue)
    stop = threading.Event()

    io = PollerIO(state, args.mode, target, soe_log)
    if not io.poll_groups:
        _say("FATAL: No poll groups could be generated from configured points. Exiting.")
        return 1

    workers = [
        _worker("poller-io", io.run, stop, log=soe_log),
        _worker("state-processor", run_state_processor, state, stop, soe_log, log=soe_log),
        _worker("database-writer", run_database_writer, event_queue, stop, EventWriter(),
                log=soe_log),
    ]

    try:
        PollerConsole(state, soe_log).run()
    except KeyboardInterrupt:
        _say("Shutdown signal received. Cleaning up.")
    else:
        _say("Console exited. Shutting down other processes.")
    finally:
        stop.set()
        _say("Waiting for workers to finish...")
        for thread in workers:
            thread.join(WORKER_JOIN_TIMEOUT_S)
        _say("All workers finished. Exiting.")
    return 0


def main(argv=None) -> int:
    """Run the poller; returns the process exit status."""
    args = _parse_args(argv)
    if args.mode == "tcp":
        target = args.target_tcp
    elif args.mode == "serial":
        target = args.target_serial
    else:
        print("Invalid mode. Use 'tcp' or 'serial'.")
        return 1

    attached: list = []
    try:
        try:
            soe_log = _attach(logging.getLogger("modbuskit.soe"), EVENT_LOG_FILE, "", attached)
        except OSError as exc:
            _say(f"Failed to open SOE log file: {exc}")
            return 1
        try:
            _attach(events.logger, DATABASE_LOG_FILE, "DB: ", attached)
        except OSError as exc:
            _say(f"Failed to open database log file: {exc}")
            return 1
        return _run(args, target, soe_log)
    finally:
        for logger, handler in attached:
            logger.removeHandler(handler)
            handler.close()


if __name__ == "__main__":
    raise SystemExit(main())