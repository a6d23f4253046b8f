"""Poll scheduling, response decoding and the poller's I/O worker."""

from __future__ import annotations

import contextlib
import logging
import queue
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

import serial

from .events import Event
from .frames import (
    FC_READ_HOLDING_REGISTERS,
    build_read_request,
    build_write_multiple_request,
    build_write_request,
)
from .points import (
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_SLAVE_ID,
    DEFAULT_TCP_SERVER_HOST,
    DEFAULT_TCP_SERVER_PORT,
    PollGroup,
    unscale_value,
)
from .state import (
    HEARTBEAT_HIGH_ADDRESS,
    HEARTBEAT_LOW_ADDRESS,
    PollerState,
    SetBitCmd,
    WriteEngCmd,
)

MAX_REGS_PER_POLL = 120
MAX_GAP = 10
READ_BUFFER_SIZE = 256
SERIAL_BAUD_RATE = 9600
CONNECT_TIMEOUT_S = 5.0
DEFAULT_TCP_TARGET = f"{DEFAULT_TCP_SERVER_HOST}:{DEFAULT_TCP_SERVER_PORT}"

_default_logger = logging.getLogger(__name__)


class ModbusExceptionResponse(Exception):
    """Raised when a slave answers with a Modbus exception frame."""

    def __init__(self, response: bytes) -> None:
        self.response = bytes(response)
        super().__init__(
            f"Modbus exception response received: {self.response.hex().upper()}"
        )


def build_poll_groups(addresses: Iterable[int]) -> list[PollGroup]:
    """Group register addresses into read requests of at most 120 registers.

    A new group starts when an address lies more than 10 registers past the
    end of the current group or would make the group longer than 120.
    """
    ordered = sorted(set(addresses))
    if not ordered:
        return []
    groups: list[PollGroup] = []
    start, count = ordered[0], 1
    for addr in ordered[1:]:
        last = start + count - 1
        if addr - start + 1 > MAX_REGS_PER_POLL or addr - last > MAX_GAP:
            groups.append(PollGroup(start, count))
            start, count = addr, 1
        else:
            count = addr - start + 1
    groups.append(PollGroup(start, count))
    return groups


def parse_read_response(response: bytes, slave_id: int, start_address: int) -> dict[int, int]:
    """Decode a read-holding-registers reply into ``{address: value}``.

    Raises :class:`ModbusExceptionResponse` for an exception reply; returns an
    empty dict for a reply that is too short or not meant for us.
    """
    data = bytes(response)
    if len(data) > 2 and data[1] > 0x80:
        raise ModbusExceptionResponse(data)
    if len(data) <= 5 or data[0] != slave_id or data[1] != FC_READ_HOLDING_REGISTERS:
        return {}
    byte_count = data[2]
    if len(data) < 5 + byte_count:
        return {}
    return {
        (start_address + i) & 0xFFFF: int.from_bytes(data[3 + 2 * i:5 + 2 * i], "big")
        for i in range(byte_count // 2)
    }


class _SocketConnection:
    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def read(self, size: int) -> bytes:
        data = self._sock.recv(size)
        if not data:
            raise ConnectionError("connection closed by peer")
        return data

    def write(self, data: bytes) -> None:
        self._sock.sendall(data)

    def close(self) -> None:
        self._sock.close()


class _SerialConnection:
    def __init__(self, port: serial.Serial) -> None:
        self._port = port

    def read(self, size: int) -> bytes:
        data = self._port.read(1)
        if size > 1:
            waiting = min(self._port.in_waiting, size - 1)
            if waiting:
                data += self._port.read(waiting)
        return data

    def write(self, data: bytes) -> None:
        self._port.write(data)

    def close(self) -> None:
        self._port.close()


def open_connection(mode: str, target: str):
    """Open a TCP (``host:port``) or serial connection with read, write and close."""
    if mode == "tcp":
        host, _, port = target.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"invalid TCP target '{target}', expected host:port")
        sock = socket.create_connection((host.strip("[]"), int(port)), timeout=CONNECT_TIMEOUT_S)
        sock.settimeout(None)
        return _SocketConnection(sock)
    port = serial.Serial(
        target,
        baudrate=SERIAL_BAUD_RATE,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=None,
    )
    return _SerialConnection(port)


@dataclass(frozen=True)
class PollResult:
    """Values read in one polling pass and whether every group answered normally."""

    values: dict = field(default_factory=dict)
    successful: bool = True


class PollerIO:
    """Talks to the slave: sends queued commands, polls registers, writes the heartbeat."""

    def __init__(
        self,
        state: PollerState,
        mode: str = "tcp",
        target: str = DEFAULT_TCP_TARGET,
        logger: Optional[logging.Logger] = None,
        *,
        slave_id: int = DEFAULT_SLAVE_ID,
        connect: Callable = open_connection,
        clock: Callable[[], float] = time.time,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        command_delay: float = 0.2,
        response_delay: float = 0.25,
        reconnect_delay: float = 2.0,
        retry_delay: float = 5.0,
    ) -> None:
        self.state = state
        self.mode = mode
        self.target = target
        self.log = logger or _default_logger
        self.slave_id = slave_id
        self.connect = connect
        self.clock = clock
        self.poll_interval = poll_interval
        self.command_delay = command_delay
        self.response_delay = response_delay
        self.reconnect_delay = reconnect_delay
        self.retry_delay = retry_delay
        self.poll_groups = build_poll_groups(state.config.points_by_address)

    def _set_bit(self, command: SetBitCmd, now: datetime) -> bytes:
        current = self.state.snapshot().current.get(command.addr, 0)
        mask = 1 << command.bit
        new_value = (current | mask) if command.val else (current & ~mask)
        packet = build_write_request(self.slave_id, command.addr, new_value & 0xFFFF)
        point = next(
            (p for p in self.state.config.points_by_address.get(command.addr, ())
             if p.bit == command.bit),
            None,
        )
        if point is None:
            raise LookupError(
                f"Could not find point definition for addr {command.addr} bit {command.bit}"
            )
        text = point.state_on if command.val else point.state_off
        self.log.info("SOE: [USER_COMMAND] %s set to %s (%s)",
                      point.point_name, "true" if command.val else "false", text)
        self.state.events.put(Event(now, point.point_name, new_value=text,
                                    event_type="USER_COMMAND"))
        self.state.suppress_write(point.point_name, text)
        return packet

    def _write_eng(self, command: WriteEngCmd, now: datetime) -> bytes:
        point = next(
            (p for p in self.state.config.points_by_address.get(command.addr, ())
             if p.point_type == "analog"),
            None,
        )
        raw = unscale_value(command.eng_value, point)
        packet = build_write_request(self.slave_id, command.addr, raw)
        name = point.point_name if point else f"Register {command.addr}"
        value_text = f"{command.eng_value:.2f}"
        self.log.info("SOE: [USER_COMMAND] %s written to %s (Raw: %d)", name, value_text, raw)
        self.state.events.put(Event(now, name, new_value=value_text,
                                    units=point.unit if point else "",
                                    event_type="USER_COMMAND"))
        self.state.suppress_write(name, value_text)
        return packet

    def execute_command(self, conn, command) -> Optional[bytes]:
        """Send ``command`` to the slave and read its acknowledgement.

        Returns the frame sent, or None for an unknown command type. Raises
        LookupError when a bit command names no configured point, and OSError
        when the frame cannot be written.
        """
        now = datetime.now()
        if isinstance(command, SetBitCmd):
            packet = self._set_bit(command, now)
        elif isinstance(command, WriteEngCmd):
            packet = self._write_eng(command, now)
        else:
            self.log.warning("Ignoring unknown command %r", command)
            return None

        tx_time = datetime.now()
        started = time.monotonic()
        self.state.update_tx(packet, tx_time)
        try:
            conn.write(packet)
        except OSError as exc:
            self.log.error("CMD Write error: %s", exc)
            raise
        time.sleep(self.command_delay)
        try:
            ack = conn.read(READ_BUFFER_SIZE)
        except OSError:
            ack = b""
        if ack:
            rtt = (time.monotonic() - started) * 1000.0
            self.state.update_rx(ack, rtt, tx_time)
        return packet

    def _send_heartbeat(self, conn) -> None:
        now = int(self.clock()) & 0xFFFFFFFF
        last = self.state.last_heartbeat_time
        if now == last:
            return
        high, low = now >> 16, now & 0xFFFF
        self.state.update_heartbeat(high, low, now)
        if high != last >> 16:
            packet = build_write_multiple_request(self.slave_id, HEARTBEAT_HIGH_ADDRESS, [high, low])
        else:
            packet = build_write_request(self.slave_id, HEARTBEAT_LOW_ADDRESS, low)
        try:
            conn.write(packet)
        except OSError as exc:
            self.log.error("Heartbeat Write error: %s", exc)
            raise

    def poll_once(self, conn) -> PollResult:
        """Read every poll group, store the values, and write the heartbeat.

        Raises OSError when the connection fails.
        """
        values: dict[int, int] = {}
        successful = True
        for group in self.poll_groups:
            request = build_read_request(self.slave_id, group.start_address, group.count)
            tx_time = datetime.now()
            started = time.monotonic()
            self.state.update_tx(request, tx_time)
            try:
                conn.write(request)
            except OSError as exc:
                self.log.error("Poll Write error: %s", exc)
                raise
            time.sleep(self.response_delay)
            try:
                response = conn.read(READ_BUFFER_SIZE)
            except OSError as exc:
                self.log.error("Poll Read error: %s", exc)
                raise
            if not response:
                continue
            rtt = (time.monotonic() - started) * 1000.0
            self.state.update_rx(response, rtt, tx_time)
            try:
                values.update(parse_read_response(response, self.slave_id, group.start_address))
            except ModbusExceptionResponse as exc:
                self.log.error("ERROR: %s", exc)
                successful = False

        if values:
            self.state.update_from_poll(values)
        if successful:
            self._send_heartbeat(conn)
        return PollResult(values, successful)

    def _serve(self, conn, stop: threading.Event) -> None:
        while True:
            started = time.monotonic()
            if stop.is_set():
                self.log.info("I/O Worker shutting down.")
                return
            try:
                command = self.state.commands.get_nowait()
            except queue.Empty:
                command = None
            if command is not None:
                try:
                    self.execute_command(conn, command)
                except LookupError as exc:
                    self.log.error("ERROR: %s", exc)
                    continue
            self.poll_once(conn)
            remaining = self.poll_interval - (time.monotonic() - started)
            if remaining > 0:
                stop.wait(remaining)

    def run(self, stop: threading.Event) -> None:
        """Connect, poll and reconnect until ``stop`` is set."""
        self.log.info("I/O Worker Started.")
        if not self.poll_groups:
            raise RuntimeError("No poll groups could be generated from configured points.")
        self.log.info("Dynamically calculated %d poll groups.", len(self.poll_groups))
        for number, group in enumerate(self.poll_groups, 1):
            self.log.info("  Group %d: Start=%d, Count=%d",
                          number, group.start_address, group.count)

        while True:
            if stop.is_set():
                self.log.info("I/O Worker shutting down before connection attempt.")
                return
            self.state.set_status(f"Connecting to {self.mode} target {self.target}...")
            try:
                conn = self.connect(self.mode, self.target)
            except (OSError, ValueError) as exc:
                self.log.error("Connection failed: %s. Retrying.", exc)
                self.state.set_status(f"Connection failed: {exc}")
                stop.wait(self.retry_delay)
                continue

            self.state.set_status(f"Connected to {self.target}")
            self.log.info("Connected to %s", self.target)
            try:
                self._serve(conn, stop)
                return
            except OSError:
                self.log.info("Connection closed due to error. Reconnecting...")
            finally:
                with contextlib.suppress(OSError):
                    conn.close()
            if stop.wait(self.reconnect_delay):
                return