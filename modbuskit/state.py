"""Live, thread-safe state shared between the poller's workers and its console."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from .points import AppConfig

HEARTBEAT_HIGH_ADDRESS = 40008
HEARTBEAT_LOW_ADDRESS = 40009


@dataclass(frozen=True)
class SetBitCmd:
    """Set or clear one bit of a bitmap register."""

    addr: int
    bit: int
    val: bool


@dataclass(frozen=True)
class WriteEngCmd:
    """Write an engineering value to a register."""

    addr: int
    eng_value: float


@dataclass(frozen=True)
class TxRxInfo:
    """The last frame sent or received, and how many there have been."""

    timestamp: str = ""
    hex: str = ""
    count: int = 0


@dataclass(frozen=True)
class ActiveAlarm:
    severity: str
    message: str


@dataclass(frozen=True)
class Snapshot:
    """A consistent copy of the poller state."""

    current: dict
    previous: dict
    alarms: dict
    last_tx: TxRxInfo
    last_rx: TxRxInfo
    round_trip_time_ms: float
    status: str


def _clock(moment: datetime) -> str:
    return moment.strftime("%H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


class PollerState:
    """Register values, alarms and traffic counters guarded by one lock."""

    def __init__(self, config: AppConfig, events: Optional[queue.Queue] = None,
                 command_capacity: int = 10) -> None:
        self._lock = threading.Lock()
        self.config = config
        self.events: queue.Queue = events if events is not None else queue.Queue()
        self.commands: queue.Queue = queue.Queue(maxsize=command_capacity)
        self.current_registers: dict[int, int] = {addr: 0 for addr in config.points_by_address}
        self.previous_registers: dict[int, int] = dict(self.current_registers)
        self.active_alarms: dict[str, ActiveAlarm] = {}
        self.last_tx = TxRxInfo()
        self.last_rx = TxRxInfo()
        self.round_trip_time_ms = 0.0
        self.status = "Initializing..."
        self.write_suppressions: dict[str, str] = {}
        self._last_heartbeat_time = 0

    @property
    def last_heartbeat_time(self) -> int:
        with self._lock:
            return self._last_heartbeat_time

    def send_command(self, command) -> None:
        """Queue a command for the I/O worker; blocks while the queue is full."""
        self.commands.put(command)

    def update_heartbeat(self, high: int, low: int, timestamp: int) -> None:
        with self._lock:
            self.current_registers[HEARTBEAT_HIGH_ADDRESS] = high
            self.current_registers[HEARTBEAT_LOW_ADDRESS] = low
            self._last_heartbeat_time = timestamp

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                current=dict(self.current_registers),
                previous=dict(self.previous_registers),
                alarms=dict(self.active_alarms),
                last_tx=self.last_tx,
                last_rx=self.last_rx,
                round_trip_time_ms=self.round_trip_time_ms,
                status=self.status,
            )

    def update_from_poll(self, new_data: dict) -> None:
        with self._lock:
            self.current_registers.update(new_data)

    def set_status(self, status: str) -> None:
        with self._lock:
            self.status = status

    def commit_state(self) -> None:
        """Make the current register values the previous ones."""
        with self._lock:
            self.previous_registers.update(self.current_registers)

    def update_tx(self, data: bytes, tx_time: datetime) -> None:
        with self._lock:
            self.last_tx = replace(
                self.last_tx,
                timestamp=_clock(tx_time),
                hex=bytes(data).hex().upper(),
                count=self.last_tx.count + 1,
            )

    def update_rx(self, data: bytes, rtt: float, tx_time: datetime) -> None:
        """Record a received frame; ``rtt`` is the round trip in milliseconds."""
        with self._lock:
            rx_time = tx_time + timedelta(milliseconds=rtt)
            self.last_rx = replace(
                self.last_rx,
                timestamp=_clock(rx_time),
                hex=bytes(data).hex().upper(),
                count=self.last_rx.count + 1,
            )
            self.round_trip_time_ms = rtt

    def set_alarms(self, alarms: dict) -> None:
        with self._lock:
            self.active_alarms = dict(alarms)

    def suppress_write(self, point_name: str, value: str) -> None:
        """Mark that a change of ``point_name`` to ``value`` was caused by our own write."""
        with self._lock:
            self.write_suppressions[point_name] = value

    def consume_suppression(self, point_name: str, value: str) -> bool:
        """Drop and report a pending suppression that matches ``value``."""
        with self._lock:
            if self.write_suppressions.get(point_name) == value:
                del self.write_suppressions[point_name]
                return True
            return False