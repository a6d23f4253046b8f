import pytest

from modbuskit.frames import (
    append_crc,
    build_read_request,
    build_write_multiple_request,
    build_write_request,
    check_crc,
    compute_crc,
)


def test_compute_crc_check_value():
    assert compute_crc(b"123456789") == 0x4B37


def test_append_crc_known_frame():
    assert append_crc(bytes.fromhex("01030000000A")) == bytes.fromhex("01030000000AC5CD")


def test_compute_crc_empty_is_initial_value():
    assert compute_crc(b"") == 0xFFFF


def test_append_crc_round_trip():
    frame = append_crc(b"\x02\x06\x00\x01\x12\x34")
    assert check_crc(frame)
    assert frame[:-2] == b"\x02\x06\x00\x01\x12\x34"


def test_check_crc_detects_corruption():
    frame = bytearray(append_crc(b"\x02\x03\x00\x00\x00\x05"))
    frame[3] ^= 0x01
    assert not check_crc(bytes(frame))


@pytest.mark.parametrize("frame", [b"", b"\x01", b"\x01\x02"])
def test_check_crc_short_frames(frame):
    assert check_crc(frame) is False


def test_build_read_request_layout():
    frame = build_read_request(2, 40001, 10)
    assert len(frame) == 8
    assert frame[:6] == b"\x02\x03\x00\x00\x00\x0a"
    assert check_crc(frame)


def test_build_read_request_address_offset():
    first = build_read_request(2, 40001, 1)
    second = build_read_request(2, 40002, 1)
    offset_first = int.from_bytes(first[2:4], "big")
    offset_second = int.from_bytes(second[2:4], "big")
    assert offset_second - offset_first == 1


def test_build_write_request_layout():
    frame = build_write_request(2, 40001, 0xABCD)
    assert frame[:6] == b"\x02\x06\x00\x00\xab\xcd"
    assert len(frame) == 8
    assert check_crc(frame)


def test_build_write_multiple_request_layout():
    frame = build_write_multiple_request(2, 40001, [0x1234, 0x5678])
    assert frame[:2] == b"\x02\x10"
    assert frame[2:4] == b"\x00\x00"
    assert frame[4:6] == b"\x00\x02"
    assert frame[6] == 4
    assert frame[7:11] == b"\x12\x34\x56\x78"
    assert len(frame) == 13
    assert check_crc(frame)


def test_build_write_multiple_request_empty():
    frame = build_write_multiple_request(2, 40001, [])
    assert frame[4:7] == b"\x00\x00\x00"
    assert check_crc(frame)