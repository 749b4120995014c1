"""Firmware upgrade of several lidars from one firmware package."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Iterable, Optional, Union

from lidarlink.firmware import Firmware, FirmwareError
from lidarlink.upgrader import (
    ERASE_WAIT,
    XFER_INTERVAL,
    LidarUpgrader,
    UpgradeProgress,
    UpgradeRequest,
)

logger = logging.getLogger(__name__)

PathType = Union[str, "os.PathLike[str]"]
ManagerSender = Callable[[int, UpgradeRequest, LidarUpgrader], Any]
ProgressCallback = Callable[[int, UpgradeProgress], Any]


class UpgradeManager:
    """Loads a firmware package and upgrades lidars with it.

    Requests go out through sender(handle, request, upgrader); the replies
    must be fed back through the matching on_*_response method of upgrader.
    """

    def __init__(
        self,
        sender: ManagerSender,
        *,
        xfer_interval: float = XFER_INTERVAL,
        erase_wait: float = ERASE_WAIT,
    ) -> None:
        self._sender = sender
        self._xfer_interval = xfer_interval
        self._erase_wait = erase_wait
        self._firmware = Firmware()
        self._loaded = False
        self._callback: Optional[ProgressCallback] = None

    @property
    def firmware(self) -> Firmware:
        """The firmware package used for upgrades."""
        return self._firmware

    def set_firmware_path(self, path: PathType) -> None:
        """Open and check the firmware package; raises FirmwareError on failure."""
        try:
            self._firmware.open(path)
        except FirmwareError:
            logger.error("Open firmware path %s fail", path)
            raise
        self._loaded = True

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Set the function called as callback(handle, progress) during upgrades."""
        self._callback = callback

    def _make_upgrader(self, handle: int) -> LidarUpgrader:
        cell: dict[str, LidarUpgrader] = {}

        def send(h: int, request: UpgradeRequest) -> Any:
            return self._sender(h, request, cell["upgrader"])

        upgrader = LidarUpgrader(
            self._firmware,
            handle,
            send,
            xfer_interval=self._xfer_interval,
            erase_wait=self._erase_wait,
        )
        cell["upgrader"] = upgrader

        callback = self._callback

        def observe(h: int, progress: UpgradeProgress) -> None:
            if callback is not None:
                callback(h, progress)

        upgrader.add_progress_observer(observe)
        return upgrader

    def upgrade_lidars(self, handles: Iterable[int]) -> dict[int, bool]:
        """Upgrade every lidar in handles and wait for all of them to finish.

        Returns whether each lidar was upgraded successfully, by handle.
        The firmware file is closed afterwards.
        """
        if not self._loaded:
            raise FirmwareError("no firmware package has been loaded")
        upgraders = [self._make_upgrader(handle) for handle in handles]
        for upgrader in upgraders:
            upgrader.start()
        results: dict[int, bool] = {}
        for upgrader in upgraders:
            results[upgrader.handle] = upgrader.wait(None)
        self.close_firmware()
        return results

    def close_firmware(self) -> None:
        """Close the firmware package file."""
        self._firmware.close()