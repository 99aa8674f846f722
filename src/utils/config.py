import os
import copy
import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "scanner": {
        "min_length": 8,
        "max_length": 20,
        "timeout_ms": 100,
        "scanner_interval_ms": 50,
        "capture_keys": True,
        "prevent_default": True,
        "stop_propagation": True,
        "device_paths": [],
        "grab_devices": False
    },
    "sync": {
        "remote_url": None,
        "api_key": None,
        "sync_interval": 10.0,
        "request_timeout": 10.0,
        "probe_url": None,
        "probe_interval": 15.0
    },
    "database": {
        "path": None
    },
    "api": {
        "enabled": False,
        "host": "127.0.0.1",
        "port": 8000
    }
}

# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    "POS_REMOTE_URL": ("sync", "remote_url", str),
    "POS_API_KEY": ("sync", "api_key", str),
    "POS_SYNC_INTERVAL": ("sync", "sync_interval", float),
    "POS_PROBE_URL": ("sync", "probe_url", str),
    "POS_DB_PATH": ("database", "path", str),
    "POS_API_PORT": ("api", "port", int),
}


def get_config_path():
    """Get the path to the config.json file (POS_CONFIG_PATH wins over the project root)"""
    env_path = os.getenv("POS_CONFIG_PATH")
    if env_path and env_path.strip():
        return Path(env_path.strip())
    current_dir = Path(__file__).resolve()
    project_root = current_dir.parent.parent.parent
    return project_root / 'config.json'


def save_config(config, config_path=None):
    """Save configuration to config.json, keeping the previous file as config.json.bak"""
    config_path = Path(config_path) if config_path else get_config_path()
    try:
        if config_path.exists():
            backup_path = config_path.with_suffix('.json.bak')
            try:
                backup_path.write_text(config_path.read_text())
                logger.info(f"Backup created at: {backup_path}")
            except OSError as e:
                logger.warning(f"⚠️ Failed to create config backup: {e}")

        with open(config_path, 'w') as f:
            json.dump(config, f, indent=2)
        logger.info(f"✅ Configuration saved to: {config_path}")
        return True
    except (OSError, TypeError) as e:
        logger.error(f"❌ Error saving configuration: {e}")
        return False


def _apply_env_overrides(config):
    for name, (section, key, cast) in ENV_OVERRIDES.items():
        value = os.getenv(name)
        if value is None or not value.strip():
            continue
        try:
            config[section][key] = cast(value.strip())
        except ValueError:
            logger.warning(f"⚠️ Ignoring {name}={value!r}: expected {cast.__name__}")


def load_config(config_path=None):
    """
    Load configuration from the config file, then override with environment variables

    Sections missing from the file keep their defaults; unknown sections are
    carried through untouched. An unreadable file falls back to the defaults.

    Returns:
        dict: The merged configuration
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = Path(config_path) if config_path else get_config_path()

    if config_path.exists():
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"❌ Error reading config file {config_path}: {e}")
            file_config = {}

        if not isinstance(file_config, dict):
            logger.error(f"❌ Config file {config_path} must hold a JSON object, using defaults")
            file_config = {}

        for section, values in file_config.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values
    else:
        logger.info(f"Config file not found at: {config_path}, using defaults")

    _apply_env_overrides(config)
    return config
