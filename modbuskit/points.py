"""Point, alarm and poll configuration, and engineering-unit scaling."""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_SERIAL_PORT = "COM2"
DEFAULT_TCP_SERVER_HOST = "127.0.0.1"
DEFAULT_TCP_SERVER_PORT = 5020
DEFAULT_SLAVE_ID = 2
DEFAULT_POLL_INTERVAL_S = 1.0


@dataclass(frozen=True)
class ScalingParams:
    """Linear mapping between raw register counts and engineering units."""

    raw_low: float
    raw_high: float
    eng_low: float
    eng_high: float


@dataclass
class PointDefinition:
    """One configured point: an analog register or a bit of a bitmap register."""

    point_name: str
    address: int
    point_type: str
    data_type: str = "unsigned"
    bit: Optional[int] = None
    unit: str = ""
    normal_state: Optional[int] = None
    state_on: str = ""
    state_off: str = ""
    scaling: Optional[ScalingParams] = None
    log_events: bool = True


@dataclass
class AlarmDefinition:
    """An alarm condition attached to a point."""

    point_name: str
    alarm_type: str
    limit: float
    severity: str
    message: str


@dataclass
class AppConfig:
    """Configured points and alarms, indexed for lookup."""

    points_by_address: dict[int, list[PointDefinition]] = field(default_factory=dict)
    points_by_name: dict[str, PointDefinition] = field(default_factory=dict)
    alarms_by_point: dict[str, list[AlarmDefinition]] = field(default_factory=dict)

    def add_point(self, point: PointDefinition) -> None:
        self.points_by_address.setdefault(point.address, []).append(point)
        self.points_by_name[point.point_name] = point

    def add_alarm(self, alarm: AlarmDefinition) -> None:
        self.alarms_by_point.setdefault(alarm.point_name, []).append(alarm)


@dataclass(frozen=True)
class PollGroup:
    """A contiguous block of registers read with a single request."""

    start_address: int
    count: int


_POINT_QUERY = (
    "SELECT point_name, modbus_address, modbus_bit, point_type, data_type, units, "
    "normal_state, state_on, state_off, scaling_raw_low, scaling_raw_high, "
    "scaling_eng_low, scaling_eng_high, log_events FROM point_definitions"
)
_ALARM_QUERY = (
    "SELECT point_name, alarm_type, limit_value, severity, message FROM alarm_definitions"
)


def load_configuration(conn: sqlite3.Connection) -> AppConfig:
    """Read point and alarm definitions from an open poller database."""
    config = AppConfig()
    try:
        point_rows = conn.execute(_POINT_QUERY).fetchall()
    except sqlite3.Error as exc:
        raise sqlite3.DatabaseError(f"failed to query point_definitions: {exc}") from exc

    for (name, address, bit, point_type, data_type, unit, normal_state,
         state_on, state_off, rl, rh, el, eh, log_events) in point_rows:
        scaling = None
        if None not in (rl, rh, el, eh):
            scaling = ScalingParams(float(rl), float(rh), float(el), float(eh))
        config.add_point(
            PointDefinition(
                point_name=name,
                address=int(address),
                point_type=point_type,
                data_type=data_type or "",
                bit=None if bit is None else int(bit),
                unit=unit or "",
                normal_state=None if normal_state is None else int(normal_state),
                state_on=state_on or "",
                state_off=state_off or "",
                scaling=scaling,
                log_events=bool(log_events),
            )
        )

    try:
        alarm_rows = conn.execute(_ALARM_QUERY).fetchall()
    except sqlite3.Error as exc:
        raise sqlite3.DatabaseError(f"failed to query alarm_definitions: {exc}") from exc

    for name, alarm_type, limit, severity, message in alarm_rows:
        config.add_alarm(
            AlarmDefinition(
                point_name=name,
                alarm_type=alarm_type,
                limit=0.0 if limit is None else float(limit),
                severity=severity,
                message=message,
            )
        )
    return config


def _as_signed(raw: int) -> int:
    raw &= 0xFFFF
    return raw - 0x10000 if raw & 0x8000 else raw


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def scale_value(raw_value: int, point: PointDefinition) -> float:
    """Convert a raw register value to engineering units for ``point``."""
    raw = float(_as_signed(raw_value)) if point.data_type == "signed" else float(raw_value & 0xFFFF)
    s = point.scaling
    if s is None:
        return raw
    raw_range = s.raw_high - s.raw_low
    if raw_range == 0:
        return s.eng_low
    return s.eng_low + ((raw - s.raw_low) / raw_range) * (s.eng_high - s.eng_low)


def unscale_value(eng_value: float, point: Optional[PointDefinition]) -> int:
    """Convert an engineering value to the 16-bit register word for ``point``."""
    if point is None or point.scaling is None:
        return int(eng_value) & 0xFFFF
    s = point.scaling
    eng_range = s.eng_high - s.eng_low
    if eng_range == 0:
        return int(s.raw_low) & 0xFFFF
    raw = s.raw_low + ((eng_value - s.eng_low) / eng_range) * (s.raw_high - s.raw_low)
    if point.data_type == "signed":
        raw = min(max(raw, -32768.0), 32767.0)
    else:
        raw = min(max(raw, 0.0), 65535.0)
    return _round_half_away(raw) & 0xFFFF