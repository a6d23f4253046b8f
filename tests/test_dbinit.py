import sqlite3

import pytest

from modbuskit.dbinit import (
    REGISTER_MAP,
    DatabaseInitError,
    RegisterEntry,
    create_and_populate,
    initialize_database,
    main,
)
from modbuskit.points import load_configuration


def _expected_point_count():
    return sum(
        1 if entry.register_type == "analog" else len(entry.points)
        for entry in REGISTER_MAP
    )


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


def test_populate_inserts_every_point(conn):
    count = create_and_populate(conn)
    rows = conn.execute("SELECT COUNT(*) FROM point_definitions").fetchone()[0]
    assert count == rows == _expected_point_count()


def test_populate_inserts_every_alarm(conn):
    create_and_populate(conn)
    rows = conn.execute("SELECT COUNT(*) FROM alarm_definitions").fetchone()[0]
    assert rows == sum(len(entry.alarms) for entry in REGISTER_MAP)


def test_round_trip_through_load_configuration(conn):
    create_and_populate(conn)
    config = load_configuration(conn)
    tank = config.points_by_name["Tank Level SP"]
    assert tank.address == 40003
    assert tank.point_type == "analog"
    assert tank.scaling.eng_high == 44
    assert tank.scaling.raw_high == 30840
    assert config.points_by_name["Heartbeat"].log_events is False
    assert config.points_by_name["Heartbeat"].unit == "counts"


def test_bitmap_point_round_trip(conn):
    create_and_populate(conn)
    config = load_configuration(conn)
    mode = config.points_by_name["Mode Auto/Manual"]
    assert mode.address == 40001
    assert mode.bit == 2
    assert mode.normal_state == 1
    assert mode.state_on == "Auto"
    assert mode.state_off == "Manual"
    assert mode.data_type == "unsigned"
    assert mode.scaling is None


def test_bitmap_rows_have_null_units(conn):
    create_and_populate(conn)
    units = conn.execute(
        "SELECT units FROM point_definitions WHERE point_type = 'bitmap'"
    ).fetchall()
    assert units and all(u == (None,) for u in units)


def test_discharge_pressure_alarms(conn):
    create_and_populate(conn)
    config = load_configuration(conn)
    alarms = config.alarms_by_point["Discharge Pressure"]
    assert sorted(a.limit for a in alarms) == [50.0, 175.0, 190.0]
    assert {a.alarm_type for a in alarms} == {"high", "low"}


def test_points_grouped_by_address_match_map(conn):
    create_and_populate(conn)
    config = load_configuration(conn)
    for entry in REGISTER_MAP:
        expected = 1 if entry.register_type == "analog" else len(entry.points)
        assert len(config.points_by_address[entry.address]) == expected


def test_second_populate_fails(conn):
    create_and_populate(conn)
    with pytest.raises(DatabaseInitError, match="point_definitions"):
        create_and_populate(conn)


def test_register_entries_are_consistent(conn):
    create_and_populate(conn)
    config = load_configuration(conn)
    for entry in REGISTER_MAP:
        assert isinstance(entry, RegisterEntry)
        if entry.register_type != "bitmap":
            continue
        stored_bits = {p.bit for p in config.points_by_address[entry.address]}
        assert stored_bits == set(entry.points)
        for bit, point in entry.points.items():
            assert point.bit == bit
            assert point.address == entry.address


def test_initialize_creates_file(tmp_path):
    path = tmp_path / "poller.db"
    count = initialize_database(path, False)
    assert path.exists()
    with sqlite3.connect(path) as connection:
        rows = connection.execute("SELECT COUNT(*) FROM point_definitions").fetchone()[0]
    assert rows == count == _expected_point_count()


def test_initialize_refuses_existing_file(tmp_path):
    path = tmp_path / "poller.db"
    path.write_bytes(b"junk")
    with pytest.raises(DatabaseInitError, match="already exists"):
        initialize_database(path, False)
    assert path.read_bytes() == b"junk"


def test_initialize_force_overwrites(tmp_path):
    path = tmp_path / "poller.db"
    path.write_bytes(b"junk")
    count = initialize_database(path, True)
    assert count == _expected_point_count()
    with sqlite3.connect(path) as connection:
        config = load_configuration(connection)
    assert len(config.points_by_name) == count


def test_initialize_in_missing_directory_fails(tmp_path):
    path = tmp_path / "missing" / "poller.db"
    with pytest.raises(DatabaseInitError):
        initialize_database(path, False)
    assert not path.exists()


def test_main_success_and_refusal(tmp_path):
    path = tmp_path / "cli.db"
    assert main(["--db", str(path)]) == 0
    assert path.exists()
    assert main(["--db", str(path)]) == 1
    assert main(["-db", str(path), "-force"]) == 0