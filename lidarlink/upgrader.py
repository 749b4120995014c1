"""State machine that drives a firmware upgrade of one lidar."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional, Union

from lidarlink.firmware import (
    ENL_FILE_VERSION_V3,
    GENERAL_TRY_COUNT_LIMIT,
    GET_PROCESS_TRY_COUNT_LIMIT,
    SYSTEM_IS_NOT_READY,
    Firmware,
)

logger = logging.getLogger(__name__)

ERASE_FIRMWARE = 0x34
READ_LENGTH = 1024
XFER_INTERVAL = 0.005
ERASE_WAIT = 1.0
_POLL_INTERVAL = 0.1


class UpgradeState(IntEnum):
    """States of the upgrade state machine."""

    IDLE = 0
    REQUEST = 1
    XFER_FIRMWARE = 2
    COMPLETE_XFER_FIRMWARE = 3
    GET_UPGRADE_PROGRESS = 4
    COMPLETE = 5
    TIMEOUT = 6
    ERR = 7
    UNDEF = 8


class UpgradeEvent(IntEnum):
    """Events fed to the upgrade state machine."""

    REQUEST_UPGRADE = 0
    XFER_FIRMWARE = 1
    COMPLETE_XFER_FIRMWARE = 2
    GET_UPGRADE_PROGRESS = 3
    COMPLETE = 4
    REINIT = 5
    TIMEOUT = 6
    ERR = 7
    UNDEF = 8


@dataclass(frozen=True)
class UpgradeProgress:
    """An event of the upgrade and the overall progress in percent."""

    event: UpgradeEvent
    progress: int


@dataclass(frozen=True)
class StartUpgradeRequest:
    """Asks the lidar to prepare for a new firmware image.

    The version, build time and whitelist are set only for version 3 packages.
    """

    firmware_type: int
    firmware_length: int
    encrypt_type: int
    dev_type: int
    firmware_version: Optional[int] = None
    firmware_buildtime: Optional[int] = None
    hw_whitelist: Optional[bytes] = None


@dataclass(frozen=True)
class XferFirmwareRequest:
    """Carries one chunk of the firmware image."""

    offset: int
    length: int
    encrypt_type: int
    data: bytes


@dataclass(frozen=True)
class CompleteXferRequest:
    """Tells the lidar the whole image was sent, with its checksum."""

    checksum_type: int
    checksum_length: int
    checksum: bytes


@dataclass(frozen=True)
class GetProgressRequest:
    """Asks the lidar how far it has got in writing the image."""


@dataclass(frozen=True)
class RebootRequest:
    """Asks the lidar to reboot into the new firmware."""


UpgradeRequest = Union[
    StartUpgradeRequest,
    XferFirmwareRequest,
    CompleteXferRequest,
    GetProgressRequest,
    RebootRequest,
]
UpgradeSender = Callable[[int, UpgradeRequest], Any]
ProgressObserver = Callable[[int, UpgradeProgress], Any]


class LidarUpgrader:
    """Upgrades the firmware of one lidar.

    Requests go out through sender(handle, request); the replies must be
    fed back through the matching on_*_response method.
    """

    def __init__(
        self,
        firmware: Firmware,
        handle: int,
        sender: UpgradeSender,
        *,
        xfer_interval: float = XFER_INTERVAL,
        erase_wait: float = ERASE_WAIT,
    ) -> None:
        self._firmware = firmware
        self._handle = handle
        self._sender = sender
        self._xfer_interval = xfer_interval
        self._erase_wait = erase_wait
        self._read_offset = 0
        self._read_length = READ_LENGTH
        self._state = UpgradeState.IDLE
        self._upgrade_error = 0
        self._progress = 0
        self._try_count = 0
        self._observer: Optional[ProgressObserver] = None
        self._thread: Optional[threading.Thread] = None
        self._cond = threading.Condition(threading.RLock())

    @property
    def handle(self) -> int:
        """Handle of the lidar being upgraded."""
        return self._handle

    @property
    def state(self) -> UpgradeState:
        """Current state of the state machine."""
        return self._state

    def add_progress_observer(self, observer: ProgressObserver) -> None:
        """Set the function called as observer(handle, progress) on every event."""
        self._observer = observer

    def start(self) -> None:
        """Begin the upgrade on a background thread."""
        self._thread = threading.Thread(
            target=self.fsm_event, args=(UpgradeEvent.REQUEST_UPGRADE, 10), daemon=True
        )
        self._thread.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the upgrade ends; True on success, False on error.

        Raises TimeoutError if it has not ended within timeout seconds.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        def remaining() -> Optional[float]:
            return None if deadline is None else max(0.0, deadline - time.monotonic())

        thread = self._thread
        if thread is not None:
            thread.join(remaining())
            if thread.is_alive():
                raise TimeoutError(f"lidar[{self._handle}] upgrade did not finish")
        with self._cond:
            finished = self._cond.wait_for(
                lambda: self.is_error() or self.is_complete(), remaining()
            )
        if not finished:
            raise TimeoutError(f"lidar[{self._handle}] upgrade did not finish")
        self._thread = None
        if self.is_error():
            logger.error("Lidar[%d] upgrade error, try again please!", self._handle)
            return False
        logger.info("Lidar[%d] upgrade successfully.", self._handle)
        return True

    def _change_state(self, event: UpgradeEvent) -> None:
        if event < UpgradeEvent.UNDEF:
            self._state = UpgradeState(int(event))

    def fsm_event(self, event: UpgradeEvent, progress: int) -> None:
        """Feed one event to the state machine and notify the observer."""
        event = UpgradeEvent(event)
        action = None
        with self._cond:
            if event in (UpgradeEvent.TIMEOUT, UpgradeEvent.ERR):
                self._change_state(event)
            logger.debug(
                "Lidar[%d] state[%d] | event[%d]", self._handle, self._state, event
            )
            entry = _TRANSITIONS.get((self._state, event))
            if entry is not None:
                action, self._state = entry
                logger.debug(
                    "Lidar[%d] new state[%d] | event[%d]", self._handle, self._state, event
                )
            self._cond.notify_all()

        if action is not None:
            action(self)

        if self._observer is not None:
            self._observer(self._handle, UpgradeProgress(event, progress))

    def start_upgrade(self) -> None:
        """Send the request that starts an upgrade."""
        self._read_offset = 0
        self._upgrade_error = 0
        self._progress = 0
        header = self._firmware.header
        logger.info(
            "Start upgrade, the lidar[%d] device type [%d]", self._handle, header.device_type
        )
        if self._firmware.package_version == ENL_FILE_VERSION_V3:
            request = StartUpgradeRequest(
                firmware_type=header.firmware_type,
                firmware_length=header.firmware_length,
                encrypt_type=header.encrypt_type,
                dev_type=header.device_type,
                firmware_version=header.firmware_version,
                firmware_buildtime=header.modify_time,
                hw_whitelist=bytes(header.hw_whitelist),
            )
        else:
            request = StartUpgradeRequest(
                firmware_type=header.firmware_type,
                firmware_length=header.firmware_length,
                encrypt_type=header.encrypt_type,
                dev_type=header.device_type,
            )
        self._sender(self._handle, request)

    def xfer_firmware(self) -> bool:
        """Send the next chunk of the image; False when there is none left."""
        header = self._firmware.header
        firmware_length = header.firmware_length
        if self._read_offset >= firmware_length:
            logger.error(
                "Lidar[%d] xfer firmware failed, read offset is wrong, "
                "firmware_length[%d], read_offset[%d].",
                self._handle, firmware_length, self._read_offset,
            )
            return False
        length = min(self._read_length, firmware_length - self._read_offset)
        chunk = bytes(self._firmware.data[self._read_offset:self._read_offset + length])
        request = XferFirmwareRequest(
            offset=self._read_offset,
            length=length,
            encrypt_type=header.encrypt_type,
            data=chunk,
        )
        if self._xfer_interval > 0:
            time.sleep(self._xfer_interval)
        logger.debug("Lidar[%d] xfer firmware read offset %d", self._handle, request.offset)
        self._sender(self._handle, request)
        return True

    def complete_xfer_firmware(self) -> None:
        """Tell the lidar the image is complete."""
        header = self._firmware.header
        request = CompleteXferRequest(
            checksum_type=header.checksum_type,
            checksum_length=header.checksum_length,
            checksum=bytes(header.checksum[: header.checksum_length]),
        )
        self._sender(self._handle, request)

    def get_upgrade_progress(self) -> None:
        """Ask the lidar for its upgrade progress."""
        self._sender(self._handle, GetProgressRequest())

    def upgrade_complete(self) -> None:
        """Ask the lidar to reboot into the new firmware."""
        self._sender(self._handle, RebootRequest())

    def _retry(self, limit: int, event: UpgradeEvent, progress: int,
               give_up: UpgradeEvent = UpgradeEvent.ERR) -> None:
        self._try_count += 1
        if self._try_count < limit:
            self.fsm_event(event, progress)
        else:
            self._try_count = 0
            logger.error("Lidar[%d] upgrade step exceeded its retry limit.", self._handle)
            self.fsm_event(give_up, 100)

    def on_start_upgrade_response(self, ok: bool, ret_code: int = 0) -> None:
        """Handle the reply to a start-upgrade request."""
        if not ok:
            logger.warning("Lidar[%d] start upgrade timeout, try again.", self._handle)
            self._retry(GENERAL_TRY_COUNT_LIMIT, UpgradeEvent.REQUEST_UPGRADE, 10)
            return
        self._try_count = 0
        if ret_code == 0:
            logger.info("Lidar[%d] start upgrade succ, start to xfer data.", self._handle)
            self.fsm_event(UpgradeEvent.XFER_FIRMWARE, 20)
        elif ret_code == SYSTEM_IS_NOT_READY:
            logger.info("Lidar[%d] is busy, try again.", self._handle)
            self.fsm_event(UpgradeEvent.REQUEST_UPGRADE, 10)
        elif ret_code == ERASE_FIRMWARE:
            if self._erase_wait > 0:
                time.sleep(self._erase_wait)
            logger.info("Lidar[%d] erasing firmware.", self._handle)
            self.fsm_event(UpgradeEvent.REQUEST_UPGRADE, 10)
        else:
            logger.error("Lidar[%d] start upgrade failed, ret_code[%d].", self._handle, ret_code)
            self.fsm_event(UpgradeEvent.ERR, 100)

    def on_xfer_firmware_response(self, ok: bool, ret_code: int = 0) -> None:
        """Handle the reply to one firmware chunk."""
        if not ok:
            logger.warning("Lidar[%d] xfer firmware timeout, try again.", self._handle)
            self._retry(GENERAL_TRY_COUNT_LIMIT, UpgradeEvent.XFER_FIRMWARE, 20)
            return
        self._try_count = 0
        if ret_code:
            logger.error("Lidar[%d] xfer firmware fail[%d].", self._handle, ret_code)
            self.fsm_event(UpgradeEvent.ERR, 100)
            return
        self._read_offset += self._read_length
        if self._read_offset < self._firmware.header.firmware_length:
            self.fsm_event(UpgradeEvent.XFER_FIRMWARE, 20)
        else:
            logger.info("Lidar[%d] xfer firmware succ, last offset[%d].",
                        self._handle, self._read_offset)
            self.fsm_event(UpgradeEvent.COMPLETE_XFER_FIRMWARE, 40)

    def on_complete_xfer_response(self, ok: bool, ret_code: int = 0) -> None:
        """Handle the reply to the complete-transfer request."""
        if not ok:
            logger.warning("Lidar[%d] complete xfer timeout, try again.", self._handle)
            self._retry(GENERAL_TRY_COUNT_LIMIT, UpgradeEvent.COMPLETE_XFER_FIRMWARE, 50)
            return
        self._try_count = 0
        if ret_code:
            logger.error("Lidar[%d] complete xfer failed, ret_code:%d.", self._handle, ret_code)
            self.fsm_event(UpgradeEvent.ERR, 100)
        else:
            logger.info("Lidar[%d] complete xfer succ.", self._handle)
            self.fsm_event(UpgradeEvent.GET_UPGRADE_PROGRESS, 50)

    def on_progress_response(self, ok: bool, ret_code: int = 0, progress: int = 0) -> None:
        """Handle the reply to a progress query."""
        if not ok:
            self._retry(GET_PROCESS_TRY_COUNT_LIMIT, UpgradeEvent.GET_UPGRADE_PROGRESS,
                        self._progress // 2 + 50)
            return
        self._try_count = 0
        if ret_code:
            logger.error("Lidar[%d] get progress failed, ret_code:%d.", self._handle, ret_code)
            self.fsm_event(UpgradeEvent.ERR, 100)
        elif progress < 100:
            logger.info("Lidar[%d] get progress[%d]", self._handle, progress)
            self.fsm_event(UpgradeEvent.GET_UPGRADE_PROGRESS, progress // 2 + 50)
        else:
            logger.info("Lidar[%d] get progress[%d]", self._handle, progress)
            self.fsm_event(UpgradeEvent.COMPLETE, 100)

    def on_reboot_response(self, ok: bool, ret_code: int = 0) -> None:
        """Handle the reply to the reboot request that ends the upgrade."""
        if not ok:
            logger.warning("Lidar[%d] reboot timeout, try again.", self._handle)
            self._retry(GENERAL_TRY_COUNT_LIMIT, UpgradeEvent.COMPLETE, 100,
                        give_up=UpgradeEvent.REINIT)
            return
        self._try_count = 0
        if ret_code:
            logger.error("Lidar[%d] reboot device fail, ret_code[%d].", self._handle, ret_code)
            self.fsm_event(UpgradeEvent.ERR, 100)
        else:
            logger.info("Lidar[%d] upgrade complete succ.", self._handle)
            self.fsm_event(UpgradeEvent.REINIT, 100)

    def is_complete(self) -> bool:
        """Whether the machine is back in its idle state."""
        return self._state == UpgradeState.IDLE

    def is_error(self) -> bool:
        """Whether the upgrade failed or timed out."""
        return self._state in (UpgradeState.TIMEOUT, UpgradeState.ERR)


_Action = Optional[Callable[[LidarUpgrader], Any]]

_TRANSITIONS: dict[tuple[UpgradeState, UpgradeEvent], tuple[_Action, UpgradeState]] = {
    (UpgradeState.IDLE, UpgradeEvent.REQUEST_UPGRADE):
        (LidarUpgrader.start_upgrade, UpgradeState.REQUEST),
    (UpgradeState.REQUEST, UpgradeEvent.REQUEST_UPGRADE):
        (LidarUpgrader.start_upgrade, UpgradeState.REQUEST),
    (UpgradeState.REQUEST, UpgradeEvent.XFER_FIRMWARE):
        (LidarUpgrader.xfer_firmware, UpgradeState.XFER_FIRMWARE),
    (UpgradeState.XFER_FIRMWARE, UpgradeEvent.XFER_FIRMWARE):
        (LidarUpgrader.xfer_firmware, UpgradeState.XFER_FIRMWARE),
    (UpgradeState.XFER_FIRMWARE, UpgradeEvent.COMPLETE_XFER_FIRMWARE):
        (LidarUpgrader.complete_xfer_firmware, UpgradeState.COMPLETE_XFER_FIRMWARE),
    (UpgradeState.COMPLETE_XFER_FIRMWARE, UpgradeEvent.COMPLETE_XFER_FIRMWARE):
        (LidarUpgrader.complete_xfer_firmware, UpgradeState.COMPLETE_XFER_FIRMWARE),
    (UpgradeState.COMPLETE_XFER_FIRMWARE, UpgradeEvent.GET_UPGRADE_PROGRESS):
        (LidarUpgrader.get_upgrade_progress, UpgradeState.GET_UPGRADE_PROGRESS),
    (UpgradeState.GET_UPGRADE_PROGRESS, UpgradeEvent.GET_UPGRADE_PROGRESS):
        (LidarUpgrader.get_upgrade_progress, UpgradeState.GET_UPGRADE_PROGRESS),
    (UpgradeState.GET_UPGRADE_PROGRESS, UpgradeEvent.COMPLETE):
        (LidarUpgrader.upgrade_complete, UpgradeState.COMPLETE),
    (UpgradeState.COMPLETE, UpgradeEvent.COMPLETE):
        (LidarUpgrader.upgrade_complete, UpgradeState.COMPLETE),
    (UpgradeState.COMPLETE, UpgradeEvent.REINIT):
        (None, UpgradeState.IDLE),
}