"""Register map and scaling used by the simulated Modbus slave."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

from .points import ScalingParams

TCP_SERVER_HOST = "127.0.0.1"
TCP_SERVER_PORT = 5020
SERIAL_SERVER_PORT = "COM5"
SLAVE_ID = 2


@dataclass(frozen=True)
class RegisterDefinition:
    """One holding register of the slave: analog, or a bitmap of named points."""

    address: int
    register_type: str
    name: str
    unit: str = ""
    scaling: Optional[ScalingParams] = None
    points: dict[int, str] = field(default_factory=dict)


def _scale(eng_high: float) -> ScalingParams:
    return ScalingParams(raw_low=0, raw_high=30840, eng_low=0, eng_high=eng_high)


REGISTER_MAP: list[RegisterDefinition] = [
    RegisterDefinition(40001, "bitmap", "Pump Station Commands", points={
        0: "Start", 1: "Stop", 2: "Auto", 3: "Chlorinator Pump Enabled",
    }),
    RegisterDefinition(40002, "analog", "Tank Level SP", "ft", _scale(44)),
    RegisterDefinition(40003, "analog", "Start SP", "ft"),
    RegisterDefinition(40004, "analog", "Stop SP", "ft"),
    RegisterDefinition(41001, "bitmap", "Pump Station Status", points={
        0: "Motor Running", 1: "Auto", 2: "Lockout", 3: "Backspin",
        4: "Drawdown Level Alarm", 5: "No Flow", 6: "High Discharge Pressure",
        7: "Building Intrusion", 8: "PLC Intrusion", 9: "AC Power Fail",
        10: "PLC Alarm", 11: "MCC Alarm",
    }),
    RegisterDefinition(41002, "bitmap", "Chlorinator Status", points={
        4: "East Door Intrusion", 5: "North Door Intrusion", 6: "MicroChlor Running",
        7: "MicroChlor Estop", 8: "Chlorinator Pump Running", 13: "PanelView Stop Command",
        14: "PanelView Start Command", 15: "PanelView Auto Command",
    }),
    RegisterDefinition(41003, "analog", "Flow", "GPM", _scale(1500)),
    RegisterDefinition(41004, "analog", "Drawdown", "ft", _scale(231)),
    RegisterDefinition(41005, "analog", "Discharge Pressure", "PSI", _scale(200)),
    RegisterDefinition(41006, "analog", "Chlorine Flow", "GPM", _scale(4000)),
    RegisterDefinition(41007, "analog", "PanelView Start SP", "ft"),
    RegisterDefinition(41008, "analog", "PanelView Stop SP", "ft"),
    RegisterDefinition(41009, "analog", "Heartbeat", "counts"),
]


def get_register_definition(addr: int) -> Optional[RegisterDefinition]:
    """Return the register at ``addr``, or None if the map has none."""
    return next((r for r in REGISTER_MAP if r.address == addr), None)


def find_point_by_name(name: str) -> Optional[tuple[int, int]]:
    """Find a bitmap point by name, ignoring case; return ``(address, bit)`` or None."""
    wanted = name.casefold()
    for register in REGISTER_MAP:
        if register.register_type != "bitmap":
            continue
        for bit in sorted(register.points):
            if register.points[bit].casefold() == wanted:
                return register.address, bit
    return None


def scale_value(raw_value: int, scaling: Optional[ScalingParams]) -> float:
    """Convert an unsigned register value to engineering units."""
    if scaling is None:
        return float(raw_value)
    raw_range = scaling.raw_high - scaling.raw_low
    if raw_range == 0:
        return scaling.eng_low
    return scaling.eng_low + ((float(raw_value) - scaling.raw_low) / raw_range) * (
        scaling.eng_high - scaling.eng_low
    )


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def unscale_value(eng_value: float, scaling: Optional[ScalingParams]) -> int:
    """Convert an engineering value to a 16-bit register word."""
    if scaling is None:
        return int(eng_value) & 0xFFFF
    eng_range = scaling.eng_high - scaling.eng_low
    if eng_range == 0:
        return int(scaling.raw_low) & 0xFFFF
    raw = scaling.raw_low + ((eng_value - scaling.eng_low) / eng_range) * (
        scaling.raw_high - scaling.raw_low
    )
    return _round_half_away(raw) & 0xFFFF