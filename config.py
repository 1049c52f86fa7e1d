# config.py
import os
import sys
import copy
import json
import logging
from typing import Dict, Optional

logger = logging.getLogger("VRGC_Core")

APP_DIR_NAME = 'VR Game Converter'

DEFAULT_CONFIG = {
    "scan_paths": [],             # extra Steam library roots
    "manual_games": {},           # display name -> executable path
    "launch_methods": {},         # launcher name -> "direct" | "protocol" | "via_launcher_app"
    "exe_size_threshold_mb": 5,
    "launcher_start_timeout": 10,
    "process_timeout": 30,
    "poll_interval": 1.0,
    "scan_workers": 4,
    "server_port": 5000,
}


def initialize_environment() -> str:
    """
    Sets up the persistent storage directory in LocalAppData (or the home
    folder elsewhere). VRGC_DATA_DIR overrides the location.
    """
    path = os.environ.get('VRGC_DATA_DIR')
    if not path:
        if os.name == 'nt':
            path = os.path.join(os.getenv('LOCALAPPDATA') or os.path.expanduser('~'), APP_DIR_NAME)
        else:
            path = os.path.expanduser(f'~/{APP_DIR_NAME}')

    if not os.path.exists(path):
        try:
            os.makedirs(path)
        except OSError as e:
            print(f"CRITICAL: Failed to create data directory: {e}")
            sys.exit(1)
    return path


def config_file_path() -> str:
    return os.path.join(initialize_environment(), 'config.json')


def load_config(config_file: Optional[str] = None) -> Dict:
    """
    Loads the application config, filling in defaults for missing keys.
    A missing file is created with the defaults.
    """
    config_file = config_file or config_file_path()
    config = copy.deepcopy(DEFAULT_CONFIG)
    try:
        if os.path.exists(config_file):
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if isinstance(data, dict):
                config.update(data)
            else:
                logger.warning(f"[Config] {config_file} is not a JSON object, using defaults")
        else:
            save_config(config, config_file)
    except (OSError, ValueError) as e:
        logger.error(f"[Config] Failure reading config: {e}")
    return config


def save_config(config: Dict, config_file: Optional[str] = None):
    config_file = config_file or config_file_path()
    try:
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
    except OSError as e:
        logger.error(f"[Config] Failure writing config: {e}")
