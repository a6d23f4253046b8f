"""Sequence-of-events records and the daily SQLite event store."""

from __future__ import annotations

import logging
import queue
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

CREATE_EVENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    point_name TEXT NOT NULL,
    previous_value TEXT,
    new_value TEXT,
    units TEXT,
    event_type TEXT NOT NULL
);"""

_INSERT_EVENT_SQL = (
    "INSERT INTO events(timestamp, point_name, previous_value, new_value, units, event_type) "
    "VALUES(?, ?, ?, ?, ?, ?)"
)


def _format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


@dataclass(frozen=True)
class Event:
    """A single loggable action or state change."""

    timestamp: datetime
    point_name: str = ""
    previous_value: str = ""
    new_value: str = ""
    units: str = ""
    event_type: str = ""


class EventWriter:
    """Writes events into one SQLite file per day, named ``events_YYYY-MM-DD.db``."""

    def __init__(self, directory=".") -> None:
        self.directory = Path(directory)
        self._connections: dict[str, sqlite3.Connection] = {}

    def _connection_for(self, date_str: str) -> sqlite3.Connection:
        conn = self._connections.get(date_str)
        if conn is not None:
            return conn
        path = self.directory / f"events_{date_str}.db"
        conn = sqlite3.connect(path, check_same_thread=False)
        try:
            conn.execute(CREATE_EVENTS_TABLE_SQL)
            conn.commit()
        except sqlite3.Error:
            conn.close()
            raise
        self._connections[date_str] = conn
        logger.info("Successfully opened and verified database: %s", path)
        return conn

    def write(self, event: Event) -> None:
        """Store ``event`` in the database for its day."""
        conn = self._connection_for(event.timestamp.strftime("%Y-%m-%d"))
        with conn:
            conn.execute(
                _INSERT_EVENT_SQL,
                (
                    _format_timestamp(event.timestamp),
                    event.point_name,
                    event.previous_value,
                    event.new_value,
                    event.units,
                    event.event_type,
                ),
            )

    def close(self) -> None:
        """Close every open daily database."""
        for conn in self._connections.values():
            conn.close()
        self._connections.clear()

    def __enter__(self) -> "EventWriter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _write_logged(writer: EventWriter, event: Event) -> None:
    try:
        writer.write(event)
    except sqlite3.Error as exc:
        logger.error("ERROR: Failed to write event to database: %s", exc)


def run_database_writer(events: "queue.Queue", stop: threading.Event, writer: EventWriter) -> None:
    """Write events from ``events`` until ``None`` arrives or ``stop`` is set.

    When ``stop`` is set, events already queued are written before returning.
    The writer is closed on exit.
    """
    logger.info("Database Writer Started.")
    try:
        while True:
            if stop.is_set():
                logger.info("Shutdown signal received. Writing remaining events to database...")
                while True:
                    try:
                        event = events.get_nowait()
                    except queue.Empty:
                        return
                    if event is None:
                        return
                    _write_logged(writer, event)
            try:
                event = events.get(timeout=0.1)
            except queue.Empty:
                continue
            if event is None:
                return
            _write_logged(writer, event)
    finally:
        writer.close()
        logger.info("Database Writer Shutting Down.")