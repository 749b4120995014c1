"""Consistency checks over parsed lidar configurations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from lidarlink.config import DeviceType, LidarCfg, LidarNetInfo

logger = logging.getLogger(__name__)

_MULTICAST_LOW = 0xE0000000
_MULTICAST_HIGH = 0xEFFFFFFF
_PORT_FIELDS = (
    "cmd_data_port",
    "push_msg_port",
    "point_data_port",
    "imu_data_port",
    "log_data_port",
)


class ParamsCheckError(ValueError):
    """Raised when a set of lidar configurations is inconsistent."""


@dataclass(frozen=True)
class FixedPorts:
    """Ports a MID360 lidar always uses, whatever the configuration says."""

    cmd_data_port: int
    push_msg_port: int
    point_data_port: int
    imu_data_port: int
    log_data_port: int


def ip_to_octets(ip: str) -> tuple[int, int, int, int]:
    """Split a dotted IPv4 address into its four octets."""
    parts = ip.split(".")
    if len(parts) != 4:
        raise ParamsCheckError(f"invalid IPv4 address: {ip!r}")
    octets = []
    for part in parts:
        if not part.isdigit():
            raise ParamsCheckError(f"invalid IPv4 address: {ip!r}")
        value = int(part)
        if value > 255:
            raise ParamsCheckError(f"invalid IPv4 address: {ip!r}")
        octets.append(value)
    return tuple(octets)  # type: ignore[return-value]


def _check_lidar_ips(lidars: list[LidarCfg], custom_lidars: list[LidarCfg]) -> None:
    seen: set[str] = set()
    for cfg in lidars:
        ip = cfg.lidar_net_info.lidar_ipaddr
        if not ip:
            continue
        if ip in seen:
            raise ParamsCheckError(f"lidar ip conflict: {ip}")
        seen.add(ip)

    for cfg in custom_lidars:
        ip = cfg.lidar_net_info.lidar_ipaddr
        if not ip:
            raise ParamsCheckError("custom lidar ipaddr is empty")
        if ip in seen:
            raise ParamsCheckError(f"lidar ip conflict: {ip}")
        seen.add(ip)


def _fix_ports(cfg: LidarCfg, fixed_ports: FixedPorts) -> None:
    if cfg.device_type != DeviceType.MID360:
        return
    net: LidarNetInfo = cfg.lidar_net_info
    for name in _PORT_FIELDS:
        required = getattr(fixed_ports, name)
        if getattr(net, name) != required:
            logger.error("Mid360 lidar %s must be %d", name, required)
            setattr(net, name, required)


def _check_multicast(cfg: LidarCfg, label: str) -> None:
    multicast_ip = cfg.host_net_info.multicast_ip
    if not multicast_ip:
        logger.info("%s point cloud data and IMU data unicast is enabled.", label)
        return
    net_ip = int.from_bytes(bytes(ip_to_octets(multicast_ip)), "big")
    if net_ip <= _MULTICAST_LOW or net_ip > _MULTICAST_HIGH:
        raise ParamsCheckError(f"lidar multicast ip error: {multicast_ip}")
    logger.info("%s point cloud and IMU data multicast ip: %s", label, multicast_ip)


def check_params(
    lidars: Optional[Iterable[LidarCfg]],
    custom_lidars: Optional[Iterable[LidarCfg]],
    fixed_ports: Optional[FixedPorts] = None,
) -> None:
    """Validate lidar configurations, correcting MID360 ports in place.

    Raises ParamsCheckError on empty input, conflicting or missing lidar
    addresses, and multicast addresses outside the multicast range.
    """
    if lidars is None and custom_lidars is None:
        raise ParamsCheckError("all params are missing")
    lidar_list = list(lidars or [])
    custom_list = list(custom_lidars or [])
    if not lidar_list and not custom_list:
        raise ParamsCheckError("all livox lidars config is empty")

    _check_lidar_ips(lidar_list, custom_list)

    if fixed_ports is not None:
        for cfg in (*lidar_list, *custom_list):
            _fix_ports(cfg, fixed_ports)

    for cfg in lidar_list:
        _check_multicast(cfg, f"Device type {int(cfg.device_type)}")
    for cfg in custom_list:
        _check_multicast(cfg, f"Lidar ip {cfg.lidar_net_info.lidar_ipaddr}")