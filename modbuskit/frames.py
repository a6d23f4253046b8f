"""Modbus RTU frame construction and CRC-16 handling."""

from __future__ import annotations

HOLDING_REGISTER_BASE = 40001

FC_READ_HOLDING_REGISTERS = 3
FC_WRITE_SINGLE_REGISTER = 6
FC_WRITE_MULTIPLE_REGISTERS = 16

_CRC_POLYNOMIAL = 0xA001


def compute_crc(data: bytes) -> int:
    """Return the Modbus CRC-16 of ``data``."""
    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ _CRC_POLYNOMIAL
            else:
                crc >>= 1
    return crc


def append_crc(frame: bytes) -> bytes:
    """Return ``frame`` followed by its CRC, low byte first."""
    return bytes(frame) + compute_crc(frame).to_bytes(2, "little")


def check_crc(frame: bytes) -> bool:
    """Tell whether the last two bytes of ``frame`` are a valid CRC of the rest."""
    if len(frame) < 3:
        return False
    received = int.from_bytes(frame[-2:], "little")
    return received == compute_crc(frame[:-2])


def _pdu_address(addr: int) -> bytes:
    return ((addr - HOLDING_REGISTER_BASE) & 0xFFFF).to_bytes(2, "big")


def _word(value: int) -> bytes:
    return (value & 0xFFFF).to_bytes(2, "big")


def build_read_request(slave_id: int, start_addr: int, count: int) -> bytes:
    """Build a read-holding-registers (FC 3) request for human addresses."""
    pdu = bytes([slave_id & 0xFF, FC_READ_HOLDING_REGISTERS])
    pdu += _pdu_address(start_addr) + _word(count)
    return append_crc(pdu)


def build_write_request(slave_id: int, addr: int, value: int) -> bytes:
    """Build a write-single-register (FC 6) request."""
    pdu = bytes([slave_id & 0xFF, FC_WRITE_SINGLE_REGISTER])
    pdu += _pdu_address(addr) + _word(value)
    return append_crc(pdu)


def build_write_multiple_request(slave_id: int, start_addr: int, values) -> bytes:
    """Build a write-multiple-registers (FC 16) request."""
    values = list(values)
    count = len(values) & 0xFFFF
    pdu = bytes([slave_id & 0xFF, FC_WRITE_MULTIPLE_REGISTERS])
    pdu += _pdu_address(start_addr) + _word(count) + bytes([(count * 2) & 0xFF])
    pdu += b"".join(_word(v) for v in values)
    return append_crc(pdu)