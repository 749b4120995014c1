import copy
import json

import pytest

from lidarlink.config import (
    ConfigError,
    DeviceType,
    HostNetInfo,
    LidarCfg,
    LidarNetInfo,
    LoggerCfg,
    ParsedConfig,
    SdkFrameworkCfg,
    load_config,
    parse_config,
)

LIDAR_NET = {
    "cmd_data_port": 56100,
    "push_msg_port": 56200,
    "point_data_port": 56300,
    "imu_data_port": 56400,
    "log_data_port": 56500,
}

HOST_NET = {
    "host_ip": "192.168.1.5",
    "multicast_ip": "224.1.1.5",
    "cmd_data_port": 56101,
    "push_msg_port": 56201,
    "point_data_port": 56301,
    "imu_data_port": 56401,
    "log_data_port": 56501,
}


def old_style_doc():
    return {
        "lidar_summary_info": {"lidar_type": 8},
        "MID360": {
            "lidar_net_info": dict(LIDAR_NET),
            "host_net_info": dict(HOST_NET),
        },
    }


def new_style_doc():
    first = dict(HOST_NET, lidar_ip=["192.168.1.10", "192.168.1.11"])
    second = dict(HOST_NET, host_ip="192.168.1.6")
    second.pop("multicast_ip")
    return {"HAP": {"lidar_net_info": dict(LIDAR_NET), "host_net_info": [first, second]}}


def test_old_style_section_gives_one_lidar():
    cfg = parse_config(old_style_doc())
    assert cfg.custom_lidars == []
    assert len(cfg.lidars) == 1
    lidar = cfg.lidars[0]
    assert lidar.device_type is DeviceType.MID360
    assert lidar.lidar_net_info == LidarNetInfo(**LIDAR_NET)
    assert lidar.host_net_info == HostNetInfo(**HOST_NET)


def test_new_style_section_splits_custom_and_type_lidars():
    cfg = parse_config(new_style_doc())
    assert [c.lidar_net_info.lidar_ipaddr for c in cfg.custom_lidars] == [
        "192.168.1.10",
        "192.168.1.11",
    ]
    assert all(c.device_type is DeviceType.HAP for c in cfg.custom_lidars)
    assert len(cfg.lidars) == 1
    assert cfg.lidars[0].host_net_info.host_ip == "192.168.1.6"
    assert cfg.lidars[0].host_net_info.multicast_ip == ""
    assert cfg.lidars[0].lidar_net_info.lidar_ipaddr == ""


def test_sections_parsed_hap_before_mid360():
    doc = old_style_doc()
    doc["HAP"] = copy.deepcopy(doc["MID360"])
    cfg = parse_config(doc)
    assert [c.device_type for c in cfg.lidars] == [DeviceType.HAP, DeviceType.MID360]


def test_defaults_when_optional_keys_absent():
    cfg = parse_config(old_style_doc())
    assert cfg.framework == SdkFrameworkCfg(master_sdk=True)
    assert cfg.logger == LoggerCfg(enable=False, cache_size_mb=0, path="./")


def test_empty_document_has_no_lidars():
    cfg = parse_config({})
    assert cfg == ParsedConfig()


def test_master_sdk_false():
    doc = old_style_doc()
    doc["master_sdk"] = False
    assert parse_config(doc).framework.master_sdk is False


def test_master_sdk_wrong_type():
    doc = old_style_doc()
    doc["master_sdk"] = "yes"
    with pytest.raises(ConfigError):
        parse_config(doc)


def test_logger_enabled_settings():
    doc = old_style_doc()
    doc.update(lidar_log_enable=True, lidar_log_cache_size_MB=500, lidar_log_path="/tmp/logs")
    assert parse_config(doc).logger == LoggerCfg(True, 500, "/tmp/logs")


def test_logger_path_used_when_disabled_key_missing():
    doc = old_style_doc()
    doc["lidar_log_path"] = "/var/lidar"
    assert parse_config(doc).logger == LoggerCfg(False, 0, "/var/lidar")


@pytest.mark.parametrize(
    "extra",
    [
        {"lidar_log_enable": 1, "lidar_log_cache_size_MB": 5, "lidar_log_path": "x"},
        {"lidar_log_enable": True, "lidar_log_path": "x"},
        {"lidar_log_enable": True, "lidar_log_cache_size_MB": -1, "lidar_log_path": "x"},
        {"lidar_log_enable": True, "lidar_log_cache_size_MB": 5},
        {"lidar_log_enable": False, "lidar_log_cache_size_MB": 5, "lidar_log_path": 3},
    ],
)
def test_logger_errors(extra):
    doc = old_style_doc()
    doc.update(extra)
    with pytest.raises(ConfigError):
        parse_config(doc)


def test_cmd_data_ip_used_and_host_ip_wins():
    doc = old_style_doc()
    host = doc["MID360"]["host_net_info"]
    del host["host_ip"]
    host["cmd_data_ip"] = "10.0.0.2"
    assert parse_config(doc).lidars[0].host_net_info.host_ip == "10.0.0.2"
    host["host_ip"] = "10.0.0.3"
    assert parse_config(doc).lidars[0].host_net_info.host_ip == "10.0.0.3"


@pytest.mark.parametrize(
    "mutate",
    [
        lambda h: h.pop("host_ip"),
        lambda h: h.update(host_ip=5),
        lambda h: h.update(cmd_data_ip=None),
        lambda h: h.update(multicast_ip=1),
        lambda h: h.pop("log_data_port"),
        lambda h: h.update(cmd_data_port="56101"),
        lambda h: h.update(push_msg_port=True),
        lambda h: h.update(imu_data_port=1.5),
        lambda h: h.update(point_data_port=2**32),
    ],
)
def test_host_net_info_errors(mutate):
    doc = old_style_doc()
    mutate(doc["MID360"]["host_net_info"])
    with pytest.raises(ConfigError):
        parse_config(doc)


@pytest.mark.parametrize("key", list(LIDAR_NET))
def test_missing_lidar_port(key):
    doc = old_style_doc()
    del doc["MID360"]["lidar_net_info"][key]
    with pytest.raises(ConfigError):
        parse_config(doc)


def test_missing_lidar_net_info():
    doc = old_style_doc()
    del doc["MID360"]["lidar_net_info"]
    with pytest.raises(ConfigError):
        parse_config(doc)


def test_host_net_info_wrong_type():
    doc = old_style_doc()
    doc["MID360"]["host_net_info"] = "nope"
    with pytest.raises(ConfigError):
        parse_config(doc)


def test_non_string_lidar_ip():
    doc = new_style_doc()
    doc["HAP"]["host_net_info"][0]["lidar_ip"] = ["192.168.1.10", 7]
    with pytest.raises(ConfigError):
        parse_config(doc)


def test_section_that_is_not_object_is_ignored():
    doc = {"HAP": [1, 2], "MID360": "x"}
    cfg = parse_config(doc)
    assert cfg.lidars == [] and cfg.custom_lidars == []


def test_document_must_be_object():
    with pytest.raises(ConfigError):
        parse_config([1, 2])


def test_load_config_round_trip(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps(new_style_doc()))
    assert load_config(path) == parse_config(new_style_doc())


def test_load_config_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{ not json")
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.json")


def test_lidar_cfg_defaults_are_independent():
    first = LidarCfg(DeviceType.HAP)
    second = LidarCfg(DeviceType.HAP)
    first.lidar_net_info.cmd_data_port = 1
    assert second.lidar_net_info.cmd_data_port == 0