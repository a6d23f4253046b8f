"""Interactive console for the poller: alarms, traffic, live points and commands."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from prompt_toolkit.application import Application, get_app
from prompt_toolkit.filters import has_focus
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.key_binding.bindings.scroll import (
    scroll_one_line_down,
    scroll_one_line_up,
    scroll_page_down,
    scroll_page_up,
)
from prompt_toolkit.layout import HSplit, Layout, VSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame, TextArea

from .points import scale_value
from .state import HEARTBEAT_HIGH_ADDRESS, HEARTBEAT_LOW_ADDRESS, PollerState, SetBitCmd, WriteEngCmd

REFRESH_INTERVAL_S = 0.25
CHANGE_HIGHLIGHT = timedelta(seconds=2)

_COLUMNS = ((28, False), (10, True), (12, True), (20, True), (10, False))

_STYLE = Style.from_dict({
    "title": "bold #fafafa bg:#575b7e",
    "key": "bold",
    "alarm.critical": "bold #ff0000",
    "alarm.warning": "#ffff00",
    "changed": "bg:#ff5f00 #000000",
})

_HELP_BROWSING = (
    "Use arrow keys or mouse to scroll | (i) to input command | (q) to quit"
)
_HELP_TYPING = (
    'Enter command and press Esc to cancel  '
    '(set "Point Name" | write 40001 4 | write "Point Name" 25.5)'
)

_default_logger = logging.getLogger(__name__)


def _row(*cells: str) -> str:
    return "".join(
        text.rjust(width) if right else text.ljust(width)
        for text, (width, right) in zip(cells, _COLUMNS)
    )


def _signed(raw: int) -> int:
    raw &= 0xFFFF
    return raw - 0x10000 if raw & 0x8000 else raw


def _title(text: str) -> tuple[str, str]:
    return ("class:title", f" {text} ")


def split_command(text: str) -> list[str]:
    """Split on spaces, keeping double-quoted runs together and dropping the quotes."""
    parts: list[str] = []
    current: list[str] = []
    in_quote = False
    for char in text.strip():
        if char == '"':
            in_quote = not in_quote
        elif char == " " and not in_quote:
            if current:
                parts.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        parts.append("".join(current))
    return parts


def _parse_address(text: str) -> Optional[int]:
    if text.isascii() and text.isdigit():
        value = int(text)
        if value <= 0xFFFF:
            return value
    return None


def handle_command(state: PollerState, text: str,
                   logger: Optional[logging.Logger] = None) -> Optional[str]:
    """Interpret one console command, queue it, and return the status it set.

    Returns None when the input holds no command.
    """
    log = logger or _default_logger
    line = text.strip()
    if not line:
        return None
    log.info("TUI: User input: '%s'", line)
    parts = split_command(line)
    if not parts:
        return None

    command = parts[0].lower()
    config = state.config
    if command in ("set", "s", "clear", "c"):
        if len(parts) < 2:
            status = "Error: command requires a point name."
        else:
            name = parts[1]
            point = config.points_by_name.get(name)
            if point is None:
                status = f"Error: Point '{name}' not found."
            elif point.point_type != "bitmap":
                status = f"Error: Point '{name}' is not a bitmap point."
            else:
                state.send_command(SetBitCmd(point.address, point.bit, command in ("set", "s")))
                status = f'Queued {command} "{name}"'
    elif command in ("write", "w"):
        status = _handle_write(state, parts)
    else:
        status = f"Error: Unknown command '{command}'."
    state.set_status(status)
    return status


def _handle_write(state: PollerState, parts: list[str]) -> str:
    if len(parts) < 3:
        return "Error: 'write' requires target and value."
    target, value_text = parts[1], parts[2]
    config = state.config
    addr = _parse_address(target)
    if addr is not None:
        points = config.points_by_address.get(addr)
        point = points[0] if points else None
    else:
        point = config.points_by_name.get(target)
        if point is None:
            return f"Error: Point name '{target}' not found."
        addr = point.address
    try:
        if "_" in value_text:
            raise ValueError(value_text)
        value = float(value_text)
    except ValueError:
        return f"Error: Invalid numeric value '{value_text}'."
    state.send_command(WriteEngCmd(addr, value))
    name = point.point_name if point else f"Register {addr}"
    return f"Queued write to {name}."


class PollerConsole:
    """Full-screen view of the poller state with a command line."""

    def __init__(self, state: PollerState, logger: Optional[logging.Logger] = None) -> None:
        self.state = state
        self.log = logger or _default_logger
        self.last_change: dict[int, datetime] = {}

    def render_alarms(self) -> list:
        """Active alarms, sorted by key, as formatted text."""
        alarms = self.state.snapshot().alarms
        fragments = [_title("Active Alarms"), ("", "\n")]
        if not alarms:
            fragments.append(("", "No active alarms."))
            return fragments
        for key in sorted(alarms):
            alarm = alarms[key]
            style = "class:alarm.critical" if alarm.severity == "CRITICAL" else "class:alarm.warning"
            fragments += [(style, f"[{alarm.severity}] {alarm.message}"), ("", "\n")]
        return fragments

    def render_status(self) -> list:
        """Connection status, round-trip time and frame counters."""
        snap = self.state.snapshot()
        rows = [
            ("Status: ", snap.status),
            ("Last RTT: ", f"{snap.round_trip_time_ms:.2f} ms"),
            ("TX Count: ", str(snap.last_tx.count)),
            ("RX Count: ", str(snap.last_rx.count)),
        ]
        fragments = [_title("Status & Timing")]
        for key, value in rows:
            fragments += [("", "\n"), ("class:key", key), ("", value)]
        return fragments

    def render_txrx(self) -> list:
        """The last frame sent and received, in hex."""
        snap = self.state.snapshot()
        tx, rx = snap.last_tx, snap.last_rx
        return [
            _title("Last Transaction (Hex)"),
            ("", "\n"),
            ("", f"TX [{tx.count}]: [{tx.timestamp}] {tx.hex}\n"),
            ("", f"RX [{rx.count}]: [{rx.timestamp}] {rx.hex}"),
        ]

    def _register_lines(self, addr: int, points: list, value: int, current: dict) -> list[str]:
        if points[0].point_type == "bitmap":
            lines = [_row(f"Reg {addr} (Bitmap)", "", str(value), f"({value:016b})")]
            for point in sorted(points, key=lambda p: p.bit or 0):
                bit_on = (value >> (point.bit or 0)) & 1 == 1
                text = point.state_on if bit_on else point.state_off
                lines.append(_row("  " + point.point_name, f".../{point.bit}", "", text))
            return lines

        point = points[0]
        raw_text = str(_signed(value)) if point.data_type == "signed" else str(value)
        if addr == HEARTBEAT_HIGH_ADDRESS:
            high = current.get(HEARTBEAT_HIGH_ADDRESS, 0)
            low = current.get(HEARTBEAT_LOW_ADDRESS, 0)
            unix_time = ((high & 0xFFFF) << 16) | (low & 0xFFFF)
            moment = datetime.fromtimestamp(unix_time, tz=timezone.utc)
            value_text = moment.strftime("%H:%M:%S UTC")
            addr_text = f"{HEARTBEAT_HIGH_ADDRESS}-{HEARTBEAT_LOW_ADDRESS % 10}"
            raw_text = str(unix_time)
        else:
            value_text = f"{scale_value(value, point):.2f}"
            addr_text = str(addr)
        return [_row(point.point_name, addr_text, raw_text, value_text, point.unit)]

    def render_data(self, now: Optional[datetime] = None) -> list:
        """Every configured register; rows changed in the last two seconds are highlighted."""
        now = now or datetime.now()
        snap = self.state.snapshot()
        current, previous = snap.current, snap.previous
        config = self.state.config
        addresses = sorted(config.points_by_address)
        hidden = {HEARTBEAT_LOW_ADDRESS} if HEARTBEAT_HIGH_ADDRESS in current else set()

        for addr in addresses:
            if current.get(addr, 0) != previous.get(addr, 0):
                self.last_change[addr] = now

        header = _row("Point Name", "Address", "Raw Value", "Value", "Unit")
        fragments = [_title(header), ("", "\n")]
        for addr in addresses:
            if addr in hidden:
                continue
            changed_at = self.last_change.get(addr)
            changed = changed_at is not None and now - changed_at < CHANGE_HIGHLIGHT
            style = "class:changed" if changed else ""
            value = current.get(addr, 0)
            for line in self._register_lines(addr, config.points_by_address[addr], value, current):
                fragments += [(style, line), ("", "\n")]
        return fragments

    def _accept(self, buffer) -> bool:
        handle_command(self.state, buffer.text, self.log)
        return False

    def run(self) -> None:
        """Show the console until the user quits."""
        input_field = TextArea(height=1, prompt="> ", multiline=False, wrap_lines=False,
                               accept_handler=self._accept)
        data_window = Window(FormattedTextControl(self.render_data, focusable=True),
                             wrap_lines=False)
        typing = has_focus(input_field)

        def help_text():
            return _HELP_TYPING if get_app().layout.has_focus(input_field) else _HELP_BROWSING

        top = VSplit([
            Frame(Window(FormattedTextControl(self.render_alarms), height=6)),
            Frame(Window(FormattedTextControl(self.render_status), height=6)),
        ])
        root = HSplit([
            top,
            Frame(Window(FormattedTextControl(self.render_txrx), height=3)),
            Frame(data_window),
            input_field,
            Window(FormattedTextControl(help_text), height=1),
        ])

        bindings = KeyBindings()

        @bindings.add("escape", filter=typing, eager=True)
        @bindings.add("c-c", filter=typing)
        def _blur(event) -> None:
            event.app.layout.focus(data_window)

        @bindings.add("q", filter=~typing)
        @bindings.add("c-c", filter=~typing)
        def _quit(event) -> None:
            event.app.exit()

        @bindings.add("i", filter=~typing)
        @bindings.add("c", filter=~typing)
        def _focus(event) -> None:
            event.app.layout.focus(input_field)

        bindings.add("up", filter=~typing)(scroll_one_line_up)
        bindings.add("down", filter=~typing)(scroll_one_line_down)
        bindings.add("pageup", filter=~typing)(scroll_page_up)
        bindings.add("pagedown", filter=~typing)(scroll_page_down)

        app = Application(
            layout=Layout(root, focused_element=input_field),
            key_bindings=bindings,
            style=_STYLE,
            full_screen=True,
            mouse_support=True,
            refresh_interval=REFRESH_INTERVAL_S,
        )
        app.run()