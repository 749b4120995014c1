"""Parsing of the JSON configuration that describes lidars and the host."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from os import PathLike
from typing import Any, Mapping, Union

logger = logging.getLogger(__name__)

_UINT32_MAX = 0xFFFFFFFF
_PORT_KEYS = (
    "cmd_data_port",
    "push_msg_port",
    "point_data_port",
    "imu_data_port",
    "log_data_port",
)


class ConfigError(ValueError):
    """Raised when a configuration document is malformed or incomplete."""


class DeviceType(IntEnum):
    """Lidar device types that a configuration section may describe."""

    MID360 = 9
    HAP = 10


# Sections are parsed in this order.
_SECTIONS = (("HAP", DeviceType.HAP), ("MID360", DeviceType.MID360))


@dataclass
class LidarNetInfo:
    """Ports the lidar uses, and its address when it is given explicitly."""

    cmd_data_port: int = 0
    push_msg_port: int = 0
    point_data_port: int = 0
    imu_data_port: int = 0
    log_data_port: int = 0
    lidar_ipaddr: str = ""


@dataclass
class HostNetInfo:
    """Address and ports the host listens on for one group of lidars."""

    host_ip: str = ""
    multicast_ip: str = ""
    cmd_data_port: int = 0
    push_msg_port: int = 0
    point_data_port: int = 0
    imu_data_port: int = 0
    log_data_port: int = 0


@dataclass
class LidarCfg:
    """Configuration of one lidar, or of every lidar of one device type."""

    device_type: DeviceType
    lidar_net_info: LidarNetInfo = field(default_factory=LidarNetInfo)
    host_net_info: HostNetInfo = field(default_factory=HostNetInfo)


@dataclass
class LoggerCfg:
    """Settings for saving the logs that lidars push to the host."""

    enable: bool = False
    cache_size_mb: int = 0
    path: str = "./"


@dataclass
class SdkFrameworkCfg:
    """Framework-wide settings."""

    master_sdk: bool = True


@dataclass
class ParsedConfig:
    """Everything a configuration document describes."""

    lidars: list[LidarCfg] = field(default_factory=list)
    custom_lidars: list[LidarCfg] = field(default_factory=list)
    logger: LoggerCfg = field(default_factory=LoggerCfg)
    framework: SdkFrameworkCfg = field(default_factory=SdkFrameworkCfg)


def _is_uint(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= _UINT32_MAX
    )


def _require_uint(obj: Mapping[str, Any], key: str, what: str) -> int:
    value = obj.get(key)
    if not _is_uint(value):
        raise ConfigError(f"{what}: missing {key} or {key} is not an unsigned integer")
    return value


def _parse_lidar_net_info(section: Mapping[str, Any]) -> LidarNetInfo:
    net = section.get("lidar_net_info")
    if not isinstance(net, dict):
        raise ConfigError("lidar_net_info is missing or is not an object")
    ports = {key: _require_uint(net, key, "lidar_net_info") for key in _PORT_KEYS}
    return LidarNetInfo(**ports)


def _parse_host_net_info(host: Any) -> HostNetInfo:
    if not isinstance(host, dict):
        raise ConfigError("host_net_info entry is not an object")
    if "host_ip" not in host and "cmd_data_ip" not in host:
        raise ConfigError("host_net_info has neither host_ip nor cmd_data_ip")
    for key in ("host_ip", "cmd_data_ip"):
        if key in host and not isinstance(host[key], str):
            raise ConfigError(f"host_net_info {key} is not a string")

    info = HostNetInfo()
    if "cmd_data_ip" in host:
        info.host_ip = host["cmd_data_ip"]
    if "host_ip" in host:
        info.host_ip = host["host_ip"]

    if "multicast_ip" in host:
        if not isinstance(host["multicast_ip"], str):
            raise ConfigError("host_net_info multicast_ip is not a string")
        info.multicast_ip = host["multicast_ip"]

    for key in _PORT_KEYS:
        setattr(info, key, _require_uint(host, key, "host_net_info"))
    return info


def _parse_type_cfg(
    section: Mapping[str, Any], host: Any, device_type: DeviceType, lidar_ip: str = ""
) -> LidarCfg:
    net_info = _parse_lidar_net_info(section)
    net_info.lidar_ipaddr = lidar_ip
    return LidarCfg(
        device_type=device_type,
        lidar_net_info=net_info,
        host_net_info=_parse_host_net_info(host),
    )


def _parse_section(
    section: Mapping[str, Any], device_type: DeviceType, result: ParsedConfig
) -> None:
    host_info = section.get("host_net_info")
    if isinstance(host_info, list):
        for entry in host_info:
            ips = entry.get("lidar_ip") if isinstance(entry, dict) else None
            if not isinstance(ips, list):
                result.lidars.append(_parse_type_cfg(section, entry, device_type))
                continue
            for ip in ips:
                if not isinstance(ip, str):
                    raise ConfigError("lidar_ip entry is not a string")
                result.custom_lidars.append(
                    _parse_type_cfg(section, entry, device_type, ip)
                )
    elif isinstance(host_info, dict):
        result.lidars.append(_parse_type_cfg(section, host_info, device_type))
    else:
        raise ConfigError("host_net_info is missing or is neither an object nor an array")


def _parse_logger(document: Mapping[str, Any]) -> LoggerCfg:
    if "lidar_log_enable" not in document:
        cfg = LoggerCfg()
        path = document.get("lidar_log_path")
        if isinstance(path, str):
            cfg.path = path
        logger.info("Lidar logger disabled.")
        return cfg

    enable = document["lidar_log_enable"]
    if not isinstance(enable, bool):
        raise ConfigError("lidar_log_enable is not a boolean")
    cache_size = _require_uint(document, "lidar_log_cache_size_MB", "logger config")
    path = document.get("lidar_log_path")
    if not isinstance(path, str):
        raise ConfigError("logger config: missing lidar_log_path or it is not a string")
    logger.info(
        "Lidar log cfg, lidar_log_enable:%s, lidar_log_cache_size_MB:%d, lidar_log_path:%s",
        enable, cache_size, path,
    )
    return LoggerCfg(enable=enable, cache_size_mb=cache_size, path=path)


def parse_config(document: Any) -> ParsedConfig:
    """Build a ParsedConfig from an already decoded JSON document."""
    if not isinstance(document, dict):
        raise ConfigError("configuration document is not an object")

    result = ParsedConfig()
    if "master_sdk" in document:
        master = document["master_sdk"]
        if not isinstance(master, bool):
            raise ConfigError("master_sdk is not a boolean")
        result.framework.master_sdk = master
        logger.info("set master/slave sdk to %s sdk", "master" if master else "slave")
    else:
        logger.info("set master/slave sdk to master sdk by default")

    result.logger = _parse_logger(document)

    for name, device_type in _SECTIONS:
        section = document.get(name)
        if isinstance(section, dict):
            _parse_section(section, device_type, result)
    return result


def _reject_constant(name: str) -> Any:
    raise ConfigError(f"invalid JSON constant {name}")


def load_config(path: Union[str, "PathLike[str]"]) -> ParsedConfig:
    """Read and parse the JSON configuration file at path."""
    try:
        with open(path, "rb") as stream:
            raw = stream.read()
    except OSError as exc:
        raise ConfigError(f"cannot open config file {path}: {exc}") from exc
    try:
        document = json.loads(raw, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"config file {path} is not valid JSON: {exc}") from exc
    return parse_config(document)