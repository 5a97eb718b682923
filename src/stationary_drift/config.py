import copy
import os
import sys

import toml
from loguru import logger

DEFAULT_SETTINGS = {
    "detector": {
        "history_duration_ms": 2000,
        "mean_threshold": 0.3,  # m/s^2
        "std_threshold": 0.2,  # m/s^2
        "stationary_duration_ms": 2000,
        "min_sample_count": 10,
    },
    "drift": {
        "speed_threshold": 0.3,  # m/s
    },
    "sensors": {
        "accelerometer_interval_ms": 100,  # 10Hz
        "gps_interval_ms": 5000,
        "gps_fastest_interval_ms": 2000,
    },
}


def load_config(path=None):
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    if path and os.path.exists(path):
        try:
            user = toml.load(path)
            for section in settings:
                if section not in user:
                    continue
                if not isinstance(user[section], dict):
                    logger.error(f"Config error: [{section}] must be a table, ignoring it")
                    continue
                settings[section].update(user[section])
        except (toml.TomlDecodeError, OSError) as e:
            logger.error(f"Config error: {e}")
    return settings


def dump_config(settings):
    return toml.dumps(settings)


def setup_logging(log_file=None, level="INFO"):
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        format="<green>[{time:HH:mm:ss}]</green> <level>{message}</level>",
        level=level,
    )
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB")
