"""Writing of the log files that one lidar pushes to the host."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import BinaryIO, Optional, Union

from lidarlink.file_manager import directory_exists, make_directory, restore_hidden_file

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


def current_time_string() -> str:
    """Local time formatted as it appears at the start of log file names."""
    return time.strftime("%Y-%m-%d_%H-%M-%S", time.localtime())


class LogFlag(Enum):
    """What a queued log packet asks the handler to do."""

    CREATE_FILE = auto()
    TRANSFER_DATA = auto()
    END_FILE = auto()


@dataclass
class LogPacket:
    """One piece of a log file pushed by a lidar.

    flag holds the push flags as received; packets queued by the handler
    carry a LogFlag instead.
    """

    log_type: int
    file_index: int
    trans_index: int
    data: bytes = b""
    flag: Union[int, LogFlag] = 0


@dataclass
class _CurrentFile:
    flag: Optional[LogFlag] = None
    file_index: int = 0
    trans_index: int = 0
    stream: Optional[BinaryIO] = None
    file_name: str = ""


class LoggerHandler:
    """Queues log packets from one lidar and writes them to files.

    Files are written hidden (with a leading dot) and made visible once
    the lidar ends them or a new file of the same log type begins.
    """

    def __init__(self, log_root_path: str, serial_num: str) -> None:
        self._root = log_root_path
        self._serial = serial_num
        self._branch_paths: dict[int, str] = {}
        self._current: defaultdict[int, _CurrentFile] = defaultdict(_CurrentFile)
        self._lock = threading.Lock()
        self._queue: deque[LogPacket] = deque()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the background thread that writes queued packets."""
        self._stop.clear()
        self._thread = threading.Thread(target=self._save_to_file, daemon=True)
        self._thread.start()

    def destroy(self) -> None:
        """Stop the writer thread and close every open file."""
        if self._thread is not None:
            self._stop.set()
            self._thread.join()
            self._thread = None
        for current in self._current.values():
            if current.stream is not None:
                current.stream.close()
                current.stream = None

    def __enter__(self) -> "LoggerHandler":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()

    def _save_to_file(self) -> None:
        while not self._stop.is_set():
            self.write()
            self._stop.wait(_POLL_INTERVAL)

    def store_log_bag(self, packet: LogPacket, flag: LogFlag) -> None:
        """Queue a copy of packet to be handled as flag."""
        logger.info("Transform Data Length : %d", len(packet.data))
        queued = replace(packet, data=bytes(packet.data), flag=LogFlag(flag))
        with self._lock:
            self._queue.append(queued)

    def _file_name(self, time_str: str, packet: LogPacket) -> str:
        return f".{time_str}_{self._serial}_{packet.log_type}_{packet.file_index}.dat"

    def create_file(self, packet: LogPacket) -> None:
        """Begin a new hidden log file, closing the previous one of its type."""
        time_str = current_time_string()
        log_type = packet.log_type
        branch = os.path.join(self._root, f"type_{log_type}")
        self._branch_paths[log_type] = branch
        if not directory_exists(branch):
            try:
                make_directory(branch)
            except OSError:
                logger.error("Can't Create Dir %s", branch)
                return

        current = self._current[log_type]
        if current.stream is not None:
            if current.trans_index + 1 != packet.trans_index:
                logger.warning(
                    "The terminal command to end log file %d has been lost.",
                    current.file_index,
                )
            current.stream.close()
            current.stream = None
            restore_hidden_file(branch, current.file_name)

        file_name = self._file_name(time_str, packet)
        file_path = os.path.join(branch, file_name)
        logger.info("file path : %s", file_path)
        try:
            current.stream = open(file_path, "ab")
        except OSError as exc:
            logger.error("Open log file %s failed: %s", file_path, exc)
            current.stream = None
        if current.stream is not None:
            current.stream.write(packet.data)
            current.stream.flush()
        current.flag = LogFlag(packet.flag)
        current.file_index = packet.file_index
        current.trans_index = packet.trans_index
        current.file_name = file_name
        logger.info("Create File index: %d", packet.file_index)

    def write_file(self, packet: LogPacket) -> None:
        """Append packet data to the open file of its log type."""
        log_type = packet.log_type
        current = self._current[log_type]
        if current.file_index != packet.file_index:
            logger.warning(
                "Log Type: %d, File Index error: last file index: %d, current file index: %d",
                log_type, current.file_index, packet.file_index,
            )
            return
        if current.trans_index + 1 != packet.trans_index and packet.trans_index != 1:
            logger.warning(
                "Log Type: %d, Trans Index error: last trans index: %d, current trans index: %d",
                log_type, current.trans_index, packet.trans_index,
            )
        if current.stream is not None:
            current.stream.write(packet.data)
            current.stream.flush()
        else:
            logger.error(
                "The starting file command was not sent from lidar. trans_index: %d",
                packet.trans_index,
            )
        current.flag = LogFlag(packet.flag)
        current.trans_index = packet.trans_index

    def stop_file(self, packet: LogPacket) -> None:
        """Close the open file of the packet's log type and make it visible."""
        log_type = packet.log_type
        current = self._current[log_type]
        if current.flag is LogFlag.END_FILE and current.trans_index + 1 != packet.trans_index:
            logger.error(
                "Multiple terminal commands to close the log files with discontinuous trans_index."
            )
        if current.stream is not None:
            current.stream.close()
            current.stream = None
            restore_hidden_file(self._branch_paths[log_type], current.file_name)
        current.flag = LogFlag(packet.flag)
        current.trans_index = packet.trans_index

    def write(self) -> None:
        """Handle every packet queued so far, in order."""
        with self._lock:
            pending, self._queue = self._queue, deque()

        for packet in pending:
            flag = LogFlag(packet.flag)
            current = self._current[packet.log_type]
            if packet.trans_index < current.trans_index and flag is not LogFlag.CREATE_FILE:
                continue
            if flag is LogFlag.CREATE_FILE:
                self.create_file(packet)
            elif flag is LogFlag.END_FILE:
                self.stop_file(packet)
            elif flag is LogFlag.TRANSFER_DATA:
                self.write_file(packet)