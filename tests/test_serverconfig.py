import pytest

from modbuskit.points import ScalingParams
from modbuskit.serverconfig import (
    REGISTER_MAP,
    find_point_by_name,
    get_register_definition,
    scale_value,
    unscale_value,
)


def test_get_register_definition_found():
    reg = get_register_definition(41005)
    assert reg.name == "Discharge Pressure"
    assert reg.unit == "PSI"
    assert reg.register_type == "analog"


def test_get_register_definition_missing():
    assert get_register_definition(40009) is None


def test_register_addresses_unique():
    addresses = [r.address for r in REGISTER_MAP]
    assert len(addresses) == len(set(addresses))
    for reg in REGISTER_MAP:
        found = get_register_definition(reg.address)
        assert found.address == reg.address
        assert found.name == reg.name


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Motor Running", (41001, 0)),
        ("motor running", (41001, 0)),
        ("CHLORINATOR PUMP ENABLED", (40001, 3)),
        ("PanelView Auto Command", (41002, 15)),
    ],
)
def test_find_point_by_name(name, expected):
    assert find_point_by_name(name) == expected


def test_find_point_by_name_prefers_first_register():
    assert find_point_by_name("auto") == (40001, 2)


def test_find_point_by_name_skips_analog_and_unknown():
    assert find_point_by_name("Flow") is None
    assert find_point_by_name("Nonexistent Point") is None


def test_scale_value_full_range():
    scaling = get_register_definition(41003).scaling
    assert scale_value(30840, scaling) == 1500.0
    assert scale_value(0, scaling) == 0.0


def test_scale_value_without_scaling():
    assert scale_value(7, None) == 7.0


def test_scale_value_zero_range():
    assert scale_value(100, ScalingParams(5, 5, 1, 2)) == 1


def test_unscale_value_without_scaling_truncates():
    assert unscale_value(12.9, None) == 12


def test_unscale_value_zero_range():
    assert unscale_value(3.0, ScalingParams(8, 20, 4, 4)) == 8


@pytest.mark.parametrize("address", [40002, 41003, 41004, 41005, 41006])
@pytest.mark.parametrize("raw", [0, 1, 617, 15420, 30839, 30840])
def test_scale_round_trip(address, raw):
    scaling = get_register_definition(address).scaling
    assert unscale_value(scale_value(raw, scaling), scaling) == raw