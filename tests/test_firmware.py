import pytest

from lidarlink.firmware import (
    ENL_FILE_VERSION_V3,
    MD5_SIGNATURE_LENGTH,
    Firmware,
    FirmwareDeviceType,
    FirmwareError,
    FirmwareHeader,
    FirmwareType,
    crc16_mcrf4xx,
)


def _header(length, **overrides):
    header = FirmwareHeader(
        file_version=ENL_FILE_VERSION_V3,
        firmware_version=0x01020304,
        firmware_length=length,
        firmware_type=FirmwareType.APP,
        device_type=FirmwareDeviceType.HAP,
        encrypt_type=1,
        checksum_type=2,
        checksum_length=16,
        checksum=bytes(range(16)) + bytes(112),
        hw_whitelist=b"\x05" * 128,
        modify_time=1234567890,
    )
    for name, value in overrides.items():
        setattr(header, name, value)
    packed = header.pack()
    header.header_checksum = crc16_mcrf4xx(packed[:-2])
    return header


def _write_package(path, data, tail=b"T" * MD5_SIGNATURE_LENGTH, header=None):
    header = header or _header(len(data))
    path.write_bytes(header.pack() + data + tail)
    return header


def test_crc16_check_value():
    assert crc16_mcrf4xx(b"123456789") == 0x6F91


def test_crc16_of_nothing_is_initial_value():
    assert crc16_mcrf4xx(b"") == 0xFFFF


def test_header_round_trip():
    header = _header(42)
    raw = header.pack()
    assert len(raw) == FirmwareHeader.SIZE
    assert FirmwareHeader.unpack(raw) == header


def test_header_size_is_fixed_by_layout():
    raw = _header(0).pack()
    assert len(raw) == 286
    assert FirmwareHeader.SIZE == 286


def test_unpack_short_raises():
    with pytest.raises(FirmwareError):
        FirmwareHeader.unpack(bytes(FirmwareHeader.SIZE - 1))


def test_open_valid_package(tmp_path):
    data = bytes(range(256)) * 3
    path = tmp_path / "fw.bin"
    header = _write_package(path, data)
    with Firmware() as firmware:
        firmware.open(path)
        assert firmware.is_open
        assert firmware.header == header
        assert firmware.data == data
        assert firmware.tail == b"T" * MD5_SIGNATURE_LENGTH
        assert firmware.package_version == ENL_FILE_VERSION_V3
        assert firmware.file_size == path.stat().st_size
    assert not firmware.is_open


def test_open_missing_file_raises(tmp_path):
    with pytest.raises(FirmwareError):
        Firmware().open(tmp_path / "absent.bin")


def test_open_too_small_raises(tmp_path):
    path = tmp_path / "small.bin"
    path.write_bytes(bytes(FirmwareHeader.SIZE + MD5_SIGNATURE_LENGTH))
    firmware = Firmware()
    with pytest.raises(FirmwareError):
        firmware.open(path)
    assert not firmware.is_open


def test_open_bad_checksum_raises(tmp_path):
    path = tmp_path / "bad.bin"
    header = _header(4)
    header.header_checksum ^= 0x1234
    _write_package(path, b"abcd", header=header)
    with pytest.raises(FirmwareError):
        Firmware().open(path)


def test_open_truncated_data_keeps_what_was_read(tmp_path):
    path = tmp_path / "short.bin"
    header = _header(100)
    path.write_bytes(header.pack() + b"x" * 40)
    firmware = Firmware()
    firmware.open(path)
    assert firmware.header.firmware_length == 100
    assert firmware.data == b"x" * 40
    assert firmware.tail == b""
    firmware.close()