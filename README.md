# lidarlink

Host-side building blocks for networked lidar sensors. The package covers
four jobs:

- reading the JSON configuration,
- checking lidar parameters,
- capturing the log files that lidars push,
- driving firmware upgrades.

It has no dependencies outside the standard library.

## Configuration — `lidarlink.config`

`load_config(path)` reads a JSON file and returns a `ParsedConfig`. If you
have already decoded the document, use `parse_config(document)` instead.
Problems are reported as follows:

- a file that is missing, malformed or incomplete raises `ConfigError`;
- the constants `NaN` and `Infinity` also raise `ConfigError`.

`ParsedConfig` has these fields:

- `lidars` and `custom_lidars`: lists of `LidarCfg`. Each holds a
  `device_type` (`DeviceType.HAP` or `DeviceType.MID360`), a `lidar_net_info`
  (`LidarNetInfo`) and a `host_net_info` (`HostNetInfo`).
- `logger`: a `LoggerCfg` with `enable`, `cache_size_mb` and `path`.
- `framework`: an `SdkFrameworkCfg` with `master_sdk`, which is `True` by
  default.

The `"HAP"` section is read first, then `"MID360"`. In each section,
`host_net_info` may take one of these forms:

- **A single object.** It gives one entry in `lidars`.
- **An array of objects.** Each object that has a `"lidar_ip"` array gives one
  entry in `custom_lidars` per IP. Every other object gives one entry in
  `lidars`.

About the host address:

- The host IP is taken from `"host_ip"`, or from `"cmd_data_ip"` when
  `"host_ip"` is absent.
- At least one of the two is required.

Logger settings:

- When `"lidar_log_enable"` is present, `"lidar_log_cache_size_MB"` and
  `"lidar_log_path"` become required.

## Parameter checks — `lidarlink.params_check`

`check_params(lidars, custom_lidars, fixed_ports=None)` raises
`ParamsCheckError` in these cases:

- both lists are missing or empty;
- two lidars share an IP;
- a custom lidar has no IP;
- a multicast address is not above 224.0.0.0 and at most 239.255.255.255.

When you pass `FixedPorts(cmd_data_port, push_msg_port, point_data_port,
imu_data_port, log_data_port)`, the ports of every MID360 entry are
overwritten in place with those values.

`ip_to_octets(ip)` splits a dotted IPv4 address into a 4-tuple.

## Log capture

### `lidarlink.logger_handler`

`LoggerHandler(log_root_path, serial_num)` writes the `LogPacket`s of one
lidar:

- `start()` runs a background writer.
- `store_log_bag(packet, LogFlag...)` queues a packet. `write()` handles the
  queue directly.
- `destroy()` stops the writer and closes files. The handler is also a
  context manager.

Files are written as `type_<log_type>/.<time>_<serial>_<log_type>_<file_index>.dat`.
Each one is renamed without its leading dot when either of these happens:

- the file is ended;
- a new file of the same type begins.

### `lidarlink.logger_manager`

`LoggerManager(sender)` routes pushed packets to per-lidar handlers. Commands
to lidars are passed to `sender(handle, request, callback)`. A request is one
of:

- `EnableLoggerRequest`;
- `LogPushAck`.

The manager's methods:

- **`init(logger_cfg)`**
  - Creates `<path>/lidar_log/`.
  - Makes hidden files under `path` visible.
  - Starts a thread that trims the log directories every 600 seconds, and
    also when a file ends.
  - Splits the cache budget between two kinds of log:
    - 200 MB for exception logs, when the total is above 800 MB;
    - otherwise 1:3 between exception and real-time logs.
- **`add_device(handle, DeviceInfo(...))`** and **`remove_device(handle)`**
  track lidars.
- **`start_logger(handle, log_type)`** and **`stop_logger(handle, log_type)`**
  send the enable and disable requests. `log_type` is a `LogType`.
- **`handle_push(handle, packet)`**
  - Acknowledges packets that ask for it.
  - Queues each packet as create, end or data.
- **`cycle_delete_once()`** deletes the oldest visible files in `type_0` and
  `type_1` until each fits its budget.
- **`destroy()`**
  - Stops everything.
  - Asks known lidars to stop real-time logging.
  - Makes remaining hidden files visible.

### `lidarlink.file_manager`

This module provides file helpers:

- `dir_total_size`
- `record_key`
- `file_names`, which returns visible files ordered by their leading
  19-character time stamp
- `restore_hidden_file`
- `restore_hidden_files`
- `delete_hidden_files`
- `make_directory`
- `directory_exists`

## Firmware — `lidarlink.firmware`

`Firmware().open(path)` reads a package in three parts:

- the little-endian header (`FirmwareHeader`, with `unpack`/`pack`);
- the image (`data`);
- the 16-byte signature (`tail`).

`open` checks the header with `crc16_mcrf4xx`. It raises `FirmwareError` when
any of these is true:

- the file cannot be opened;
- the file is too small;
- the header checksum does not match.

`package_version` gives the header's file version. `close()` releases the
file, and `Firmware` is also a context manager.

## Upgrades

### `lidarlink.upgrader`

`LidarUpgrader(firmware, handle, sender)` drives one lidar through these steps:

1. start request
2. firmware transfer, in 1024-byte chunks
3. complete transfer
4. progress polling
5. reboot

Each step is sent as a request object through `sender(handle, request)`.
Replies are fed back through the handler for that step:

- `on_start_upgrade_response`
- `on_xfer_firmware_response`
- `on_complete_xfer_response`
- `on_progress_response`
- `on_reboot_response`

Timeouts (`ok=False`) are retried:

- up to 10 times for most steps;
- up to 30 times for progress polling.

Observers registered with `add_progress_observer` receive an `UpgradeProgress`
on every event. `start()` begins the upgrade on a thread. `wait(timeout)`
returns `True` on success and `False` on error.

### `lidarlink.upgrade_manager`

`UpgradeManager(sender)` upgrades several lidars from one package:

1. Call `set_firmware_path(path)` to load the package.
2. Optionally call `set_progress_callback(callback)`.
3. Call `upgrade_lidars(handles)`. It starts one upgrader per handle, waits
   for all of them, closes the file, and returns `{handle: success}`.
4. The sender is called as `sender(handle, request, upgrader)`, so you can
   route each reply back to the right upgrader.

## Example

```python
from lidarlink.config import load_config
from lidarlink.params_check import check_params

cfg = load_config("lidar_config.json")
check_params(cfg.lidars, cfg.custom_lidars)
for lidar in cfg.lidars + cfg.custom_lidars:
    print(lidar.device_type.name, lidar.host_net_info.host_ip)
```

## What the package does not do

- It does not open sockets or speak the lidar wire protocol. Every request
  goes to a sender function that you supply, and every reply must be passed
  back in by you.
- It does not discover devices.
- It does not receive point-cloud or IMU data.
- It has no command-line program.

## Installing and testing

```
pip install .
pip install .[test]
pytest
```