"""Create a poller database and fill it with the default point and alarm map."""

from __future__ import annotations

import argparse
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .points import AlarmDefinition, PointDefinition, ScalingParams

logger = logging.getLogger(__name__)

CREATE_POINT_DEFS_SQL = """
CREATE TABLE point_definitions (
    point_name TEXT PRIMARY KEY,
    modbus_address INTEGER NOT NULL,
    modbus_bit INTEGER,
    point_type TEXT NOT NULL,
    data_type TEXT NOT NULL DEFAULT 'unsigned',
    units TEXT,
    cos_tolerance REAL DEFAULT 0.0,
    report_interval_seconds INTEGER DEFAULT 0,
    normal_state INTEGER,
    state_on TEXT,
    state_off TEXT,
    scaling_raw_low REAL,
    scaling_raw_high REAL,
    scaling_eng_low REAL,
    scaling_eng_high REAL,
    log_events INTEGER NOT NULL DEFAULT 1
);"""

CREATE_ALARM_DEFS_SQL = """
CREATE TABLE alarm_definitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    point_name TEXT NOT NULL,
    alarm_type TEXT NOT NULL,
    limit_value REAL,
    severity TEXT NOT NULL,
    message TEXT NOT NULL,
    FOREIGN KEY (point_name) REFERENCES point_definitions (point_name)
);"""

_INSERT_POINT_SQL = (
    "INSERT INTO point_definitions(point_name, modbus_address, modbus_bit, point_type, "
    "data_type, units, normal_state, state_on, state_off, scaling_raw_low, "
    "scaling_raw_high, scaling_eng_low, scaling_eng_high, log_events) "
    "VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
)
_INSERT_ALARM_SQL = (
    "INSERT INTO alarm_definitions(point_name, alarm_type, limit_value, severity, message) "
    "VALUES(?, ?, ?, ?, ?)"
)


class DatabaseInitError(Exception):
    """Raised when the poller database cannot be created or populated."""


@dataclass
class RegisterEntry:
    """One register of the default map: an analog value or a bitmap of points."""

    address: int
    register_type: str
    name: str = ""
    data_type: str = ""
    unit: str = ""
    scaling: Optional[ScalingParams] = None
    points: dict[int, PointDefinition] = field(default_factory=dict)
    alarms: list[AlarmDefinition] = field(default_factory=list)
    log_events: bool = False


def _bitmap(address: int, specs: dict, alarms=()) -> RegisterEntry:
    points = {
        bit: PointDefinition(
            point_name=name,
            address=address,
            point_type="bitmap",
            data_type="unsigned",
            bit=bit,
            normal_state=normal,
            state_off=state_off,
            state_on=state_on,
            log_events=True,
        )
        for bit, (name, normal, state_off, state_on) in specs.items()
    }
    return RegisterEntry(address=address, register_type="bitmap", points=points, alarms=list(alarms))


def _analog(address: int, name: str, data_type: str, unit: str = "", scaling=None,
            log_events: bool = True, alarms=()) -> RegisterEntry:
    return RegisterEntry(
        address=address,
        register_type="analog",
        name=name,
        data_type=data_type,
        unit=unit,
        scaling=scaling,
        alarms=list(alarms),
        log_events=log_events,
    )


def _scale(eng_high: float) -> ScalingParams:
    return ScalingParams(raw_low=0, raw_high=30840, eng_low=0, eng_high=eng_high)


REGISTER_MAP: list[RegisterEntry] = [
    _bitmap(40001, {
        0: ("Start", 0, "Inactive", "Active"),
        1: ("Stop", 0, "Inactive", "Active"),
        2: ("Mode Auto/Manual", 1, "Manual", "Auto"),
    }),
    _bitmap(40002, {
        0: ("Chlorinator Pump Enabled", 1, "Disabled", "Enabled"),
    }),
    _analog(40003, "Tank Level SP", "unsigned", "ft", _scale(44)),
    _analog(40004, "Start SP", "unsigned", "ft"),
    _analog(40005, "Stop SP", "unsigned", "ft"),
    _analog(40008, "Poller Heartbeat High", "unsigned", log_events=False),
    _analog(40009, "Poller Heartbeat Low", "unsigned", log_events=False),
    _bitmap(
        41001,
        {
            0: ("Motor Running", 0, "Stopped", "Running"),
            1: ("Status Auto/Manual", 1, "Manual", "Auto"),
            2: ("Lockout", 0, "OK", "LOCKOUT"),
            3: ("Backspin", 0, "OK", "Active"),
            4: ("Drawdown Level Alarm", 0, "OK", "ALARM"),
            5: ("No Flow", 1, "No Flow", "Flow OK"),
            6: ("High Discharge Pressure", 0, "OK", "High Pressure"),
            7: ("Building Intrusion", 1, "INTRUSION", "Secure"),
            8: ("PLC Intrusion", 1, "INTRUSION", "Secure"),
            9: ("AC Power Fail", 1, "FAILED", "OK"),
            10: ("PLC Alarm", 0, "OK", "ALARM"),
            11: ("MCC Alarm", 0, "OK", "ALARM"),
        },
        alarms=[
            AlarmDefinition("Lockout", "on", 0.0, "CRITICAL", "PUMP LOCKOUT ACTIVE"),
            AlarmDefinition("PLC Alarm", "on", 0.0, "WARNING", "PLC Fault Detected"),
            AlarmDefinition("AC Power Fail", "on", 0.0, "CRITICAL", "AC Power Failure"),
        ],
    ),
    _bitmap(41002, {
        4: ("East Door Intrusion", 1, "INTRUSION", "Secure"),
        5: ("North Door Intrusion", 1, "INTRUSION", "Secure"),
        6: ("MicroChlor Running", 0, "Stopped", "Running"),
        7: ("MicroChlor Estop", 0, "OK", "E-STOP"),
        8: ("Chlorinator Pump Running", 0, "Stopped", "Running"),
        13: ("PanelView Stop Command", 0, "Inactive", "Active"),
        14: ("PanelView Start Command", 0, "Inactive", "Active"),
        15: ("PanelView Auto Command", 0, "Inactive", "Active"),
    }),
    _analog(41003, "Flow", "signed", "GPM", _scale(1500)),
    _analog(41004, "Drawdown", "signed", "ft", _scale(231)),
    _analog(
        41005, "Discharge Pressure", "signed", "PSI", _scale(200),
        alarms=[
            AlarmDefinition("Discharge Pressure", "high", 190.0, "CRITICAL",
                            "Discharge Pressure Critically High"),
            AlarmDefinition("Discharge Pressure", "high", 175.0, "WARNING",
                            "Discharge Pressure High Warning"),
            AlarmDefinition("Discharge Pressure", "low", 50.0, "WARNING",
                            "Discharge Pressure Low Warning"),
        ],
    ),
    _analog(41006, "Chlorine Flow", "signed", "GPM", _scale(4000)),
    _analog(41007, "PanelView Start SP", "unsigned", "ft"),
    _analog(41008, "PanelView Stop SP", "unsigned", "ft"),
    _analog(41009, "Heartbeat", "unsigned", "counts", log_events=False),
]


def _point_rows(entry: RegisterEntry):
    """Yield (name, row) pairs to insert for one register entry."""
    if entry.register_type == "analog":
        s = entry.scaling
        scaling = (None,) * 4 if s is None else (s.raw_low, s.raw_high, s.eng_low, s.eng_high)
        yield entry.name, (
            entry.name, entry.address, None, "analog", entry.data_type, entry.unit,
            None, None, None, *scaling, int(entry.log_events),
        )
        return
    for bit in sorted(entry.points):
        p = entry.points[bit]
        yield p.point_name, (
            p.point_name, entry.address, bit, "bitmap", "unsigned", None,
            p.normal_state, p.state_on, p.state_off, None, None, None, None,
            int(p.log_events),
        )


def create_and_populate(conn: sqlite3.Connection) -> int:
    """Create the schema and insert the default map; return the number of points inserted."""
    logger.info("Creating database schema...")
    try:
        conn.execute(CREATE_POINT_DEFS_SQL)
    except sqlite3.Error as exc:
        raise DatabaseInitError(f"could not create point_definitions table: {exc}") from exc
    try:
        conn.execute(CREATE_ALARM_DEFS_SQL)
    except sqlite3.Error as exc:
        raise DatabaseInitError(f"could not create alarm_definitions table: {exc}") from exc
    logger.info("Schema created successfully.")

    logger.info("Populating database with default point and alarm definitions...")
    point_count = 0
    for entry in REGISTER_MAP:
        for name, row in _point_rows(entry):
            try:
                conn.execute(_INSERT_POINT_SQL, row)
            except sqlite3.Error as exc:
                logger.warning("WARNING: Failed to insert %s point %s: %s. Skipping.",
                               entry.register_type, name, exc)
                continue
            point_count += 1
        for alarm in entry.alarms:
            try:
                conn.execute(_INSERT_ALARM_SQL, (alarm.point_name, alarm.alarm_type,
                                                 alarm.limit, alarm.severity, alarm.message))
            except sqlite3.Error as exc:
                logger.warning("WARNING: Failed to insert alarm for point %s: %s. Skipping.",
                               alarm.point_name, exc)

    try:
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise DatabaseInitError(f"could not commit transaction: {exc}") from exc

    logger.info("Database population completed. Inserted %d points.", point_count)
    return point_count


def initialize_database(path, force: bool = False) -> int:
    """Create a fresh poller database at ``path``; return the number of points inserted."""
    db_path = Path(path)
    logger.info("Initializing database at %s...", db_path)

    if not force and db_path.exists():
        raise DatabaseInitError(
            f"Database file '{db_path}' already exists. Use --force to overwrite."
        )
    if force:
        try:
            db_path.unlink(missing_ok=True)
        except OSError as exc:
            raise DatabaseInitError(
                f"Could not remove existing database file '{db_path}': {exc}"
            ) from exc
        logger.info("Removed existing database file due to --force flag.")

    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as exc:
        raise DatabaseInitError(f"Could not create database file {db_path}: {exc}") from exc

    try:
        count = create_and_populate(conn)
    except DatabaseInitError as exc:
        conn.close()
        db_path.unlink(missing_ok=True)
        raise DatabaseInitError(
            f"Failed to initialize schema and populate data: {exc}"
        ) from exc
    conn.close()

    logger.info("Successfully created and populated database '%s'.", db_path)
    return count


def main(argv=None) -> int:
    """Command-line entry point; returns the process exit status."""
    parser = argparse.ArgumentParser(description="Create and populate a poller database.")
    parser.add_argument("-db", "--db", default="poller.db",
                        help="Path to the SQLite database file to create.")
    parser.add_argument("-force", "--force", action="store_true",
                        help="Force overwrite if the database file already exists.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        initialize_database(args.db, args.force)
    except DatabaseInitError as exc:
        logger.error("FATAL: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())