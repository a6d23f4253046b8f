import queue
import threading
import time
from datetime import datetime

from modbuskit.points import AlarmDefinition, AppConfig, PointDefinition, ScalingParams
from modbuskit.processor import StateProcessor, run_state_processor
from modbuskit.state import PollerState

NOW = datetime(2024, 3, 1, 8, 0, 0)


def make_state(lockout_logs=True):
    config = AppConfig()
    config.add_point(PointDefinition("Lockout", 41001, "bitmap", bit=2, normal_state=0,
                                     state_on="LOCKOUT", state_off="OK",
                                     log_events=lockout_logs))
    config.add_point(PointDefinition("Discharge Pressure", 41005, "analog", data_type="signed",
                                     unit="PSI", scaling=ScalingParams(0, 30840, 0, 200)))
    config.add_alarm(AlarmDefinition("Lockout", "on", 0.0, "CRITICAL", "PUMP LOCKOUT ACTIVE"))
    config.add_alarm(AlarmDefinition("Discharge Pressure", "high", 190.0, "CRITICAL",
                                     "Discharge Pressure Critically High"))
    config.add_alarm(AlarmDefinition("Discharge Pressure", "low", 50.0, "WARNING",
                                     "Discharge Pressure Low Warning"))
    return PollerState(config, queue.Queue())


def drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items


def test_no_points_gives_no_events():
    state = PollerState(AppConfig(), queue.Queue())
    assert StateProcessor(state).process(NOW) == []
    assert state.events.empty()


def test_all_zero_first_poll_is_skipped():
    state = make_state()
    proc = StateProcessor(state)
    assert proc.process(NOW) == []
    assert proc.has_processed_initial_state is False


def test_initial_bitmap_state_and_alarm():
    state = make_state()
    state.update_from_poll({41001: 1 << 2})
    proc = StateProcessor(state)
    events = proc.process(NOW)
    initial = [e for e in events if e.event_type == "INITIAL_STATE"]
    assert [(e.point_name, e.new_value) for e in initial] == [("Lockout", "LOCKOUT")]
    raised = {e.point_name for e in events if e.event_type == "ALARM_RAISED"}
    assert "PUMP LOCKOUT ACTIVE" in raised
    assert set(state.snapshot().alarms) == {
        "41001-PUMP LOCKOUT ACTIVE",
        "41005-Discharge Pressure Low Warning",
    }
    assert proc.has_processed_initial_state is True
    assert drain(state.events) == events


def test_bitmap_field_change_clears_alarm():
    state = make_state()
    state.update_from_poll({41001: 1 << 2})
    proc = StateProcessor(state)
    proc.process(NOW)
    state.update_from_poll({41001: 0})
    events = proc.process(NOW)
    changes = [e for e in events if e.event_type == "FIELD_CHANGE"]
    assert [(e.point_name, e.previous_value, e.new_value) for e in changes] == [
        ("Lockout", "LOCKOUT", "OK")
    ]
    cleared = [e for e in events if e.event_type == "ALARM_CLEARED"]
    assert [(e.point_name, e.previous_value, e.new_value) for e in cleared] == [
        ("PUMP LOCKOUT ACTIVE", "RAISED", "CLEARED")
    ]
    assert state.snapshot().previous[41001] == 0


def test_analog_initial_and_change():
    state = make_state()
    state.update_from_poll({41005: 30840})
    proc = StateProcessor(state)
    events = proc.process(NOW)
    initial = [e for e in events if e.event_type == "INITIAL_STATE"]
    assert [(e.point_name, e.new_value, e.units) for e in initial] == [
        ("Discharge Pressure", "200.00", "PSI")
    ]
    raised = [e for e in events if e.event_type == "ALARM_RAISED"]
    assert [(e.point_name, e.previous_value) for e in raised] == [
        ("Discharge Pressure Critically High", "CRITICAL")
    ]

    state.update_from_poll({41005: 15420})
    events = proc.process(NOW)
    change = [e for e in events if e.event_type == "FIELD_CHANGE"]
    assert [(e.previous_value, e.new_value) for e in change] == [("200.00", "100.00")]
    cleared = [e.point_name for e in events if e.event_type == "ALARM_CLEARED"]
    assert cleared == ["Discharge Pressure Critically High"]


def test_suppressed_write_emits_no_field_change():
    state = make_state()
    state.update_from_poll({41001: 1 << 2})
    proc = StateProcessor(state)
    proc.process(NOW)
    state.suppress_write("Lockout", "OK")
    state.update_from_poll({41001: 0})
    events = proc.process(NOW)
    assert [e for e in events if e.event_type == "FIELD_CHANGE"] == []
    assert state.consume_suppression("Lockout", "OK") is False


def test_unchanged_state_after_first_poll_gives_nothing():
    state = make_state()
    state.update_from_poll({41001: 1 << 2})
    proc = StateProcessor(state)
    proc.process(NOW)
    assert proc.process(NOW) == []


def test_log_events_false_still_raises_alarms():
    state = make_state(lockout_logs=False)
    state.update_from_poll({41001: 1 << 2})
    events = StateProcessor(state).process(NOW)
    assert [e for e in events if e.event_type == "INITIAL_STATE"] == []
    assert "PUMP LOCKOUT ACTIVE" in {e.point_name for e in events}


def test_run_state_processor_emits_until_stopped():
    state = make_state()
    stop = threading.Event()
    worker = threading.Thread(target=run_state_processor, args=(state, stop))
    worker.start()
    state.update_from_poll({41001: 1 << 2})
    deadline = time.monotonic() + 5
    while state.events.empty() and time.monotonic() < deadline:
        time.sleep(0.05)
    stop.set()
    worker.join(timeout=5)
    assert not worker.is_alive()
    types = {e.event_type for e in drain(state.events)}
    assert "INITIAL_STATE" in types