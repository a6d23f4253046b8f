from datetime import datetime

from modbuskit.points import AppConfig, PointDefinition
from modbuskit.state import ActiveAlarm, PollerState, SetBitCmd, WriteEngCmd


def make_state():
    config = AppConfig()
    config.add_point(PointDefinition("Flow", 41003, "analog"))
    config.add_point(PointDefinition("Lockout", 41001, "bitmap", bit=2, normal_state=0))
    return PollerState(config)


def test_initial_registers_are_zero_for_configured_addresses():
    snap = make_state().snapshot()
    assert snap.current == {41001: 0, 41003: 0}
    assert snap.previous == {41001: 0, 41003: 0}
    assert snap.status == "Initializing..."
    assert snap.alarms == {}


def test_update_and_commit():
    state = make_state()
    state.update_from_poll({41003: 77})
    snap = state.snapshot()
    assert snap.current[41003] == 77
    assert snap.previous[41003] == 0
    state.commit_state()
    assert state.snapshot().previous[41003] == 77


def test_snapshot_is_a_copy():
    state = make_state()
    snap = state.snapshot()
    snap.current[41003] = 99
    assert state.snapshot().current[41003] == 0


def test_update_heartbeat_sets_both_words():
    state = make_state()
    state.update_heartbeat(0x1234, 0x5678, 0x12345678)
    snap = state.snapshot()
    assert snap.current[40008] == 0x1234
    assert snap.current[40009] == 0x5678
    assert state.last_heartbeat_time == 0x12345678


def test_update_tx_records_hex_and_counts():
    state = make_state()
    t = datetime(2024, 1, 1, 12, 0, 0)
    state.update_tx(bytes([0x01, 0x03, 0x00, 0x0A]), t)
    state.update_tx(bytes([0xFF]), t)
    tx = state.snapshot().last_tx
    assert tx.hex == "FF"
    assert tx.count == 2
    assert tx.timestamp == "12:00:00.000"


def test_update_rx_records_rtt():
    state = make_state()
    state.update_rx(bytes([0xAB, 0x0C]), 12.5, datetime(2024, 1, 1, 12, 0, 0))
    snap = state.snapshot()
    assert snap.last_rx.hex == "AB0C"
    assert snap.last_rx.count == 1
    assert snap.last_rx.timestamp == "12:00:00.012"
    assert snap.round_trip_time_ms == 12.5


def test_set_status_and_alarms():
    state = make_state()
    state.set_status("Connected to x")
    alarms = {"41001-A": ActiveAlarm("CRITICAL", "A")}
    state.set_alarms(alarms)
    snap = state.snapshot()
    assert snap.status == "Connected to x"
    assert snap.alarms == alarms


def test_send_command_queues_in_order():
    state = make_state()
    state.send_command(SetBitCmd(41001, 2, True))
    state.send_command(WriteEngCmd(41003, 25.5))
    assert state.commands.get_nowait() == SetBitCmd(41001, 2, True)
    assert state.commands.get_nowait() == WriteEngCmd(41003, 25.5)


def test_suppression_consumed_only_on_match():
    state = make_state()
    state.suppress_write("Flow", "25.50")
    assert state.consume_suppression("Flow", "10.00") is False
    assert state.consume_suppression("Flow", "25.50") is True
    assert state.consume_suppression("Flow", "25.50") is False