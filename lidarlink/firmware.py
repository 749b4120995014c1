"""Reading and checking of encrypted lidar firmware package files."""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import BinaryIO, ClassVar, Optional, Union

logger = logging.getLogger(__name__)

PathType = Union[str, "os.PathLike[str]"]

MD5_SIGNATURE_LENGTH = 16
ENL_FILE_VERSION_V2 = 0x02000000
ENL_FILE_VERSION_V3 = 0x03000000

# Return codes of an upgrade request.
EVERYTHING_IS_OK = 0
FIRMWARE_OUT_OF_LENGTH = 1
SYSTEM_IS_NOT_READY = 2
FIRMWARE_TYPE_MISMATCH = 3
UPGRADE_STATE_MISMATCH = 4

GENERAL_TRY_COUNT_LIMIT = 10
GET_PROCESS_TRY_COUNT_LIMIT = 30
GET_PROGRESS_TRY_COUNT_LIMIT = 10

_HEADER_FORMAT = "<IIIBBB2sBH128s128sQH"


class FirmwareError(Exception):
    """Raised when a firmware file cannot be opened or is malformed."""


class FirmwareType(IntEnum):
    """Kind of image a firmware package holds."""

    MULTI_APP = 0
    APP = 1
    LOADER = 2
    UNKNOWN = 3


class FirmwareDeviceType(IntEnum):
    """Device a firmware package is built for."""

    HUB = 0
    MID40 = 1
    TELE = 2
    HORIZON = 3
    HUB_V2 = 4
    MID_LITE = 5
    MID70 = 6
    AVIA = 7
    XXX1 = 8
    XXX2 = 9
    HAP = 10
    UNKNOWN = 11


def crc16_mcrf4xx(data: bytes) -> int:
    """CRC-16/MCRF4XX: reflected polynomial 0x1021, initial value 0xFFFF."""
    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0x8408 if crc & 1 else crc >> 1
    return crc


@dataclass
class FirmwareHeader:
    """The fixed-size little-endian header that leads a firmware package."""

    SIZE: ClassVar[int] = struct.calcsize(_HEADER_FORMAT)

    file_version: int = 0
    firmware_version: int = 0
    firmware_length: int = 0
    firmware_type: int = 0
    device_type: int = 0
    encrypt_type: int = 0
    reserved: bytes = bytes(2)
    checksum_type: int = 0
    checksum_length: int = 0
    checksum: bytes = bytes(128)
    hw_whitelist: bytes = bytes(128)
    modify_time: int = 0
    header_checksum: int = 0

    @classmethod
    def unpack(cls, raw: bytes) -> "FirmwareHeader":
        """Decode a header from the first SIZE bytes of raw."""
        if len(raw) < cls.SIZE:
            raise FirmwareError(
                f"firmware header needs {cls.SIZE} bytes, got {len(raw)}"
            )
        return cls(*struct.unpack_from(_HEADER_FORMAT, raw))

    def pack(self) -> bytes:
        """Encode the header into its SIZE-byte wire form."""
        values = tuple(getattr(self, item.name) for item in fields(self))
        try:
            return struct.pack(_HEADER_FORMAT, *values)
        except struct.error as exc:
            raise FirmwareError(f"cannot pack firmware header: {exc}") from exc


_MIN_FILE_SIZE = FirmwareHeader.SIZE + MD5_SIGNATURE_LENGTH + 1


class Firmware:
    """A firmware package: header, raw image and trailing signature."""

    def __init__(self) -> None:
        self.header = FirmwareHeader()
        self.data = b""
        self.tail = bytes(MD5_SIGNATURE_LENGTH)
        self.file_size = 0
        self._file: Optional[BinaryIO] = None

    @property
    def package_version(self) -> int:
        """File format version of the package, from its header."""
        return self.header.file_version

    def open(self, path: PathType) -> None:
        """Read and check the package at path; raises FirmwareError on failure."""
        self.close()
        try:
            stream = open(path, "rb")
        except OSError as exc:
            raise FirmwareError(f"open {path} firmware file fail: {exc}") from exc
        try:
            self.file_size = os.fstat(stream.fileno()).st_size
            if self.file_size < _MIN_FILE_SIZE:
                raise FirmwareError("firmware file size is too small")
            raw = stream.read(FirmwareHeader.SIZE)
            header = FirmwareHeader.unpack(raw)
            logger.info("This firmware is used for device[%d].", header.device_type)
            crc = crc16_mcrf4xx(raw[: FirmwareHeader.SIZE - 2])
            if crc != header.header_checksum:
                raise FirmwareError(
                    f"header checksum[{crc:04x} {header.header_checksum:04x}] error"
                )
            logger.info("Firmware raw data size : %d", header.firmware_length)
            data = stream.read(header.firmware_length)
            tail = stream.read(MD5_SIGNATURE_LENGTH)
        except BaseException:
            stream.close()
            raise

        if len(data) < header.firmware_length or len(tail) < MD5_SIGNATURE_LENGTH:
            logger.warning(
                "Read firmware fail[%d]!", len(data) + len(tail)
            )
        else:
            logger.info("All firmware data have been read successfully.")

        self.header = header
        self.data = data
        self.tail = tail
        self._file = stream

    def close(self) -> None:
        """Release the open package file, if any."""
        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def is_open(self) -> bool:
        """Whether a package file is currently held open."""
        return self._file is not None

    def __enter__(self) -> "Firmware":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()