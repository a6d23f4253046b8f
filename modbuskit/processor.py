"""Change detection, sequence-of-events logging and alarm evaluation."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from .events import Event
from .points import AlarmDefinition, PointDefinition, scale_value
from .state import ActiveAlarm, PollerState

PROCESS_INTERVAL_S = 0.25

_default_logger = logging.getLogger(__name__)


def _bit_of(value: int, point: PointDefinition) -> int:
    return (value >> point.bit) & 1


def _signed(raw: int) -> int:
    raw &= 0xFFFF
    return raw - 0x10000 if raw & 0x8000 else raw


def _alarm_active(alarm: AlarmDefinition, point: PointDefinition, value: int) -> bool:
    if point.point_type == "analog":
        scaled = scale_value(value, point)
        return (alarm.alarm_type == "high" and scaled >= alarm.limit) or (
            alarm.alarm_type == "low" and scaled <= alarm.limit
        )
    if point.point_type == "bitmap" and point.normal_state is not None:
        bit = _bit_of(value, point)
        if alarm.alarm_type == "on":
            return bit != point.normal_state
        if alarm.alarm_type == "off":
            return bit == point.normal_state
    return False


class StateProcessor:
    """Compares current and previous registers and emits events for what changed."""

    def __init__(self, state: PollerState, logger: Optional[logging.Logger] = None) -> None:
        self.state = state
        self.log = logger or _default_logger
        self.has_processed_initial_state = False

    def _emit(self, emitted: list, event: Event) -> None:
        emitted.append(event)
        self.state.events.put(event)

    def _has_changes(self, current: dict, previous: dict, first: bool) -> bool:
        if first:
            return any(v != 0 for v in current.values())
        return any(addr not in previous or previous[addr] != val for addr, val in current.items())

    def _initial_state(self, point, value, now, emitted) -> None:
        if point.point_type == "analog":
            if value == 0:
                return
            scaled = scale_value(value, point)
            raw_display = _signed(value) if point.data_type == "signed" else value
            self.log.info("SOE: [INITIAL_STATE] %s is %.2f %s (Raw: %s)",
                          point.point_name, scaled, point.unit, raw_display)
            if point.log_events:
                self._emit(emitted, Event(now, point.point_name, new_value=f"{scaled:.2f}",
                                          units=point.unit, event_type="INITIAL_STATE"))
            return
        bit_on = _bit_of(value, point) == 1
        if point.normal_state is None or bit_on == (point.normal_state == 1):
            return
        text = point.state_on if bit_on else point.state_off
        self.log.info("SOE: [INITIAL_STATE] -> %s is %s", point.point_name, text)
        if point.log_events:
            self._emit(emitted, Event(now, point.point_name, new_value=text,
                                      event_type="INITIAL_STATE"))

    def _field_change(self, point, value, prev, now, emitted) -> bool:
        """Report a change; return False when it was our own suppressed write."""
        if point.point_type == "analog":
            curr_str = f"{scale_value(value, point):.2f}"
            prev_str = f"{scale_value(prev, point):.2f}"
            if self.state.consume_suppression(point.point_name, curr_str):
                return False
            self.log.info("SOE: [FIELD_CHANGE] %s changed from %s to %s %s",
                          point.point_name, prev_str, curr_str, point.unit)
            if point.log_events:
                self._emit(emitted, Event(now, point.point_name, prev_str, curr_str,
                                          point.unit, "FIELD_CHANGE"))
            return True
        if _bit_of(value, point) == _bit_of(prev, point):
            return True
        if _bit_of(value, point) == 1:
            new_text, old_text = point.state_on, point.state_off
        else:
            new_text, old_text = point.state_off, point.state_on
        if self.state.consume_suppression(point.point_name, new_text):
            return False
        self.log.info("SOE: [FIELD_CHANGE]  -> %s changed from %s to %s",
                      point.point_name, old_text, new_text)
        if point.log_events:
            self._emit(emitted, Event(now, point.point_name, old_text, new_text,
                                      event_type="FIELD_CHANGE"))
        return True

    def process(self, now: Optional[datetime] = None) -> list:
        """Run one processing pass and return the events it emitted."""
        snap = self.state.snapshot()
        current, previous, old_alarms = snap.current, snap.previous, snap.alarms
        if not current:
            return []
        first = not self.has_processed_initial_state
        if not self._has_changes(current, previous, first):
            return []

        now = now or datetime.now()
        emitted: list = []
        new_alarms: dict[str, ActiveAlarm] = {}
        config = self.state.config

        for addr in sorted(config.points_by_address):
            value = current.get(addr, 0)
            prev = previous.get(addr, 0)
            for point in config.points_by_address[addr]:
                if first:
                    self._initial_state(point, value, now, emitted)
                elif value != prev:
                    if not self._field_change(point, value, prev, now, emitted):
                        continue
                for alarm in config.alarms_by_point.get(point.point_name, ()):
                    if _alarm_active(alarm, point, value):
                        new_alarms[f"{addr}-{alarm.message}"] = ActiveAlarm(alarm.severity,
                                                                            alarm.message)

        for key in sorted(new_alarms.keys() - old_alarms.keys()):
            alarm = new_alarms[key]
            self.log.info("SOE: [ALARM_RAISED] %s: %s", alarm.severity, alarm.message)
            self._emit(emitted, Event(now, alarm.message, previous_value=alarm.severity,
                                      new_value="RAISED", event_type="ALARM_RAISED"))
        for key in sorted(old_alarms.keys() - new_alarms.keys()):
            alarm = old_alarms[key]
            self.log.info("SOE: [ALARM_CLEARED] %s", alarm.message)
            self._emit(emitted, Event(now, alarm.message, previous_value="RAISED",
                                      new_value="CLEARED", event_type="ALARM_CLEARED"))

        self.state.set_alarms(new_alarms)
        self.state.commit_state()
        if first:
            self.has_processed_initial_state = True
        return emitted


def run_state_processor(state: PollerState, stop: threading.Event,
                        logger: Optional[logging.Logger] = None) -> None:
    """Process state changes every quarter second until ``stop`` is set."""
    processor = StateProcessor(state, logger)
    processor.log.info("State Processor Started.")
    while not stop.wait(PROCESS_INTERVAL_S):
        processor.process()
    processor.log.info("State Processor shutting down.")