"""Collection of the log files that lidars push to the host."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional, Union

from lidarlink.config import LoggerCfg
from lidarlink.file_manager import (
    dir_total_size,
    directory_exists,
    file_names,
    make_directory,
    restore_hidden_files,
)
from lidarlink.logger_handler import LogFlag, LoggerHandler, LogPacket

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
MAX_EXCEPTION_LOG_CACHE_SIZE_MB = 200
EXCEPTION_LOG_CACHE_RATIO = 1
REALTIME_LOG_CACHE_RATIO = 3
MAX_LOG_CACHE_SIZE_MB = 1_000_000_000
CYCLE_DELETE_INTERVAL = 600.0

PUSH_FLAG_NEEDS_ACK = 1
PUSH_FLAG_CREATE = 1 << 1
PUSH_FLAG_STOP = 1 << 2


class LogType(IntEnum):
    """Kinds of log a lidar can push."""

    REAL_TIME = 0
    EXCEPTION = 1


@dataclass
class DeviceInfo:
    """What the logger needs to know about a detected lidar."""

    sn: str
    dev_type: int = 0
    lidar_ip: str = ""
    cmd_port: int = 0


@dataclass(frozen=True)
class EnableLoggerRequest:
    """Asks a lidar to start or stop pushing one kind of log."""

    log_type: int
    enable: bool


@dataclass(frozen=True)
class LogPushAck:
    """Acknowledges one pushed log packet."""

    ret_code: int
    log_type: int
    file_index: int
    trans_index: int


LoggerRequest = Union[EnableLoggerRequest, LogPushAck]
LoggerCallback = Callable[..., Any]
CommandSender = Callable[[int, LoggerRequest, Optional[LoggerCallback]], Any]


class LoggerManager:
    """Routes pushed log packets to per-lidar handlers and bounds disk use.

    Commands to lidars go through the sender given at construction,
    called as sender(handle, request, callback).
    """

    def __init__(self, sender: Optional[CommandSender] = None) -> None:
        self._sender = sender
        self._enabled = False
        self._cycle_enabled = False
        self._root = "./"
        self.max_realtime_cache_size = 150 * MIB
        self.max_exception_cache_size = 50 * MIB
        self._wake = threading.Event()
        self._cycle_thread: Optional[threading.Thread] = None
        self._devices: dict[int, DeviceInfo] = {}
        self._handlers: dict[int, LoggerHandler] = {}
        self._destroyed = False

    @property
    def log_root_path(self) -> str:
        """Directory under which log files are written."""
        return self._root

    @property
    def devices(self) -> dict[int, DeviceInfo]:
        """Known lidars by handle."""
        return dict(self._devices)

    def init(self, logger_cfg: Optional[LoggerCfg]) -> None:
        """Configure logging; raises OSError if the log directory cannot be made."""
        if logger_cfg is None or not logger_cfg.enable:
            self._enabled = False
            return
        size = logger_cfg.cache_size_mb
        if size == 0 or size > MAX_LOG_CACHE_SIZE_MB:
            self._enabled = False
            return

        total_ratio = EXCEPTION_LOG_CACHE_RATIO + REALTIME_LOG_CACHE_RATIO
        if size > MAX_EXCEPTION_LOG_CACHE_SIZE_MB * total_ratio // EXCEPTION_LOG_CACHE_RATIO:
            self.max_exception_cache_size = MAX_EXCEPTION_LOG_CACHE_SIZE_MB * MIB
            self.max_realtime_cache_size = (size - MAX_EXCEPTION_LOG_CACHE_SIZE_MB) * MIB
        else:
            self.max_realtime_cache_size = (size * REALTIME_LOG_CACHE_RATIO // total_ratio) * MIB
            self.max_exception_cache_size = (size * EXCEPTION_LOG_CACHE_RATIO // total_ratio) * MIB

        self._init_save_path(logger_cfg.path)
        self._enabled = True

        try:
            restore_hidden_files(logger_cfg.path)
        except (OSError, ValueError):
            logger.error("Change hidden files to normal files failed")

        self._cycle_enabled = True
        self._wake.clear()
        self._cycle_thread = threading.Thread(target=self._cycle_delete, daemon=True)
        self._cycle_thread.start()

    def _init_save_path(self, path: str) -> None:
        root = os.path.join(path, "lidar_log", "")
        if not directory_exists(root):
            try:
                make_directory(root)
            except OSError:
                logger.error("Can't Create Dir %s", root)
                raise
        self._root = root

    def log_enabled(self) -> bool:
        """Whether log collection is enabled."""
        return self._enabled

    def add_device(self, handle: int, device: DeviceInfo) -> None:
        """Remember a lidar; a handle already known keeps its first record."""
        self._devices.setdefault(handle, device)

    def remove_device(self, handle: int) -> None:
        """Forget a lidar."""
        self._devices.pop(handle, None)

    def _send(self, handle: int, request: LoggerRequest,
              callback: Optional[LoggerCallback]) -> Any:
        if self._sender is None:
            raise RuntimeError("no command sender configured")
        return self._sender(handle, request, callback)

    def start_logger(self, handle: int, log_type: LogType,
                     callback: Optional[LoggerCallback] = None) -> bool:
        """Ask a lidar to start pushing logs; False when logging is disabled."""
        if not self._enabled:
            logger.info("Disable logger.")
            return False
        logger.info("Start Logger handle: %d, log_type: %d", handle, int(log_type))
        self._send(handle, EnableLoggerRequest(int(log_type), True), callback)
        return True

    def stop_logger(self, handle: int, log_type: LogType,
                    callback: Optional[LoggerCallback] = None) -> None:
        """Ask a lidar to stop pushing logs."""
        logger.info("Stop Logger handle: %d, log_type: %d", handle, int(log_type))
        self._send(handle, EnableLoggerRequest(int(log_type), False), callback)

    def _on_stop_response(self, handle: int, ok: bool, ret_code: Optional[int]) -> None:
        if not ok or ret_code is None or ret_code != 0:
            logger.error("Lidar:%d stop logger failed, retrying.", handle)
            self.stop_logger(handle, LogType.REAL_TIME,
                             lambda h, o, r: self._on_stop_response(h, o, r))
            return
        logger.info("The lidar:%d stop logger succ.", handle)
        self.remove_device(handle)

    def handle_push(self, handle: int, packet: LogPacket) -> None:
        """Handle one log packet pushed by a lidar, acknowledging it if asked."""
        if not self._enabled:
            return
        flag = int(packet.flag)
        if flag & PUSH_FLAG_NEEDS_ACK:
            ack = LogPushAck(0, packet.log_type, packet.file_index, packet.trans_index)
            self._send(handle, ack, None)
        if flag & PUSH_FLAG_CREATE:
            self._on_create(handle, packet)
        elif flag & PUSH_FLAG_STOP:
            self._on_stop(handle, packet)
        else:
            self._on_transfer(handle, packet)

    def _on_create(self, handle: int, packet: LogPacket) -> None:
        if handle not in self._handlers:
            device = self._devices.get(handle)
            if device is None:
                logger.error("LogType: %d no device for handle %d", packet.log_type, handle)
                return
            handler = LoggerHandler(self._root, device.sn)
            handler.start()
            self._handlers[handle] = handler
        self._handlers[handle].store_log_bag(packet, LogFlag.CREATE_FILE)

    def _on_stop(self, handle: int, packet: LogPacket) -> None:
        handler = self._handlers.get(handle)
        if handler is None:
            logger.info("LogType: %d Stop! File doesn't create", packet.log_type)
            return
        handler.store_log_bag(packet, LogFlag.END_FILE)
        self._wake.set()

    def _on_transfer(self, handle: int, packet: LogPacket) -> None:
        handler = self._handlers.get(handle)
        if handler is None:
            logger.error("LogType : %d File doesn't create", packet.log_type)
            return
        handler.store_log_bag(packet, LogFlag.TRANSFER_DATA)

    def _cycle_delete(self) -> None:
        while self._cycle_enabled:
            self._wake.wait(CYCLE_DELETE_INTERVAL)
            if not self._cycle_enabled:
                break
            self.cycle_delete_once()
            self._wake.clear()

    @staticmethod
    def _trim(path: str, limit: int) -> None:
        if not directory_exists(path) or dir_total_size(path) <= limit:
            return
        try:
            files = file_names(path)
        except OSError:
            logger.error("Can not get filenames in this directory: %s", path)
            return
        for _, name in files:
            if dir_total_size(path) <= limit:
                break
            try:
                os.remove(os.path.join(path, name))
            except OSError as exc:
                logger.warning("Failed to remove %s: %s", name, exc)

    def cycle_delete_once(self) -> None:
        """Delete the oldest log files until each log type fits its cache size."""
        self._trim(os.path.join(self._root, "type_0"), self.max_realtime_cache_size)
        self._trim(os.path.join(self._root, "type_1"), self.max_exception_cache_size)

    def _stop_all_loggers(self) -> None:
        if not self._enabled or self._sender is None:
            return
        for handle in list(self._devices):
            self.stop_logger(handle, LogType.REAL_TIME, None)

    def destroy(self) -> None:
        """Stop background work, close files and ask lidars to stop logging."""
        if self._destroyed:
            return
        self._cycle_enabled = False
        self._wake.set()
        if self._cycle_thread is not None:
            self._cycle_thread.join()
            self._cycle_thread = None
        for handler in self._handlers.values():
            handler.destroy()
        self._handlers.clear()
        self._stop_all_loggers()
        if self._enabled:
            try:
                restore_hidden_files(self._root)
            except (OSError, ValueError):
                logger.error("Change hidden files to normal files failed")
        self._enabled = False
        self._destroyed = True

    def __enter__(self) -> "LoggerManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()