"""Configuration parsing, log capture and firmware upgrade tools for networked lidar sensors."""

__version__ = "0.1.0"

__all__ = [
    "config",
    "params_check",
    "file_manager",
    "firmware",
    "logger_handler",
    "logger_manager",
    "upgrader",
    "upgrade_manager",
]