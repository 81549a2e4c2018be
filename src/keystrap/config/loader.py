# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import KeystrapSettings

log = logging.getLogger("keystrap")

DEFAULT_CONFIG_PATH = Path("~/.keystrap/config.yaml")


def _find_config_file(explicit: str | Path | None) -> Path | None:
    """
    Locate the settings file using this priority:

    1. explicit path (``--config``); must exist
    2. KEYSTRAP_CONFIG environment variable
    3. ~/.keystrap/config.yaml
    """
    if explicit:
        p = Path(explicit).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"Config file not found: {p}")
        return p

    env = os.environ.get("KEYSTRAP_CONFIG")
    if env:
        p = Path(env).expanduser()
        if p.is_file():
            return p
        log.warning("KEYSTRAP_CONFIG=%s does not exist - using defaults", env)
        return None

    p = DEFAULT_CONFIG_PATH.expanduser()
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    return data


def load_settings(path: str | Path | None = None) -> KeystrapSettings:
    """
    Load and validate keystrap settings.

    Every key is optional; anything missing falls back to the defaults on
    ``KeystrapSettings``. ``${ENV_VAR}`` placeholders are resolved at load time.
    """
    cfg_path = _find_config_file(path)
    if cfg_path is None:
        log.debug("No config file found - using built-in defaults")
        return KeystrapSettings()

    log.debug("Loading settings from %s", cfg_path)
    return KeystrapSettings.model_validate(_load_yaml(cfg_path))
