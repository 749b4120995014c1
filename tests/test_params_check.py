import pytest

from lidarlink.config import DeviceType, HostNetInfo, LidarCfg, LidarNetInfo
from lidarlink.params_check import (
    FixedPorts,
    ParamsCheckError,
    check_params,
    ip_to_octets,
)

PORTS = FixedPorts(
    cmd_data_port=56100,
    push_msg_port=56200,
    point_data_port=56300,
    imu_data_port=56400,
    log_data_port=56500,
)


def make_cfg(device_type=DeviceType.HAP, ip="", multicast="", ports=1):
    return LidarCfg(
        device_type=device_type,
        lidar_net_info=LidarNetInfo(
            cmd_data_port=ports,
            push_msg_port=ports,
            point_data_port=ports,
            imu_data_port=ports,
            log_data_port=ports,
            lidar_ipaddr=ip,
        ),
        host_net_info=HostNetInfo(host_ip="192.168.1.5", multicast_ip=multicast),
    )


def test_ip_to_octets_splits_address():
    assert ip_to_octets("192.168.1.50") == (192, 168, 1, 50)


@pytest.mark.parametrize("bad", ["1.2.3", "1.2.3.256", "a.b.c.d", "1..2.3", ""])
def test_ip_to_octets_rejects_bad(bad):
    with pytest.raises(ParamsCheckError):
        ip_to_octets(bad)


def test_both_none_raises():
    with pytest.raises(ParamsCheckError):
        check_params(None, None)


def test_both_empty_raises():
    with pytest.raises(ParamsCheckError):
        check_params([], [])


def test_lidars_without_ip_may_repeat():
    lidars = [make_cfg(), make_cfg(DeviceType.MID360)]
    check_params(lidars, [])
    assert [c.lidar_net_info.lidar_ipaddr for c in lidars] == ["", ""]


def test_duplicate_lidar_ip_raises():
    with pytest.raises(ParamsCheckError):
        check_params([make_cfg(ip="10.0.0.2"), make_cfg(ip="10.0.0.2")], [])


def test_custom_lidar_without_ip_raises():
    with pytest.raises(ParamsCheckError):
        check_params([], [make_cfg(ip="")])


def test_conflict_between_lists_raises():
    with pytest.raises(ParamsCheckError):
        check_params([make_cfg(ip="10.0.0.2")], [make_cfg(ip="10.0.0.2")])


def test_mid360_ports_are_corrected():
    mid = make_cfg(DeviceType.MID360, ip="10.0.0.3", ports=1)
    hap = make_cfg(DeviceType.HAP, ip="10.0.0.4", ports=1)
    check_params([], [mid, hap], PORTS)
    net = mid.lidar_net_info
    assert (
        net.cmd_data_port,
        net.push_msg_port,
        net.point_data_port,
        net.imu_data_port,
        net.log_data_port,
    ) == (56100, 56200, 56300, 56400, 56500)
    assert hap.lidar_net_info.cmd_data_port == 1


def test_ports_untouched_without_fixed_ports():
    mid = make_cfg(DeviceType.MID360, ports=7)
    check_params([mid], None)
    assert mid.lidar_net_info.log_data_port == 7


@pytest.mark.parametrize("multicast", ["224.0.0.1", "239.255.255.255"])
def test_valid_multicast_passes(multicast):
    cfg = make_cfg(multicast=multicast)
    check_params([cfg], [])
    assert cfg.host_net_info.multicast_ip == multicast


@pytest.mark.parametrize("multicast", ["224.0.0.0", "192.168.1.1", "240.0.0.1"])
def test_out_of_range_multicast_raises(multicast):
    with pytest.raises(ParamsCheckError):
        check_params([], [make_cfg(ip="10.0.0.9", multicast=multicast)])


def test_malformed_multicast_raises():
    with pytest.raises(ParamsCheckError):
        check_params([make_cfg(multicast="239.1.1")], [])