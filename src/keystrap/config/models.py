# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/config/models.py

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class KeystrapSettings(BaseModel):
    """
    Local and remote paths, timeouts and service names for a run.
    """

    # defaults go through _expand too
    model_config = ConfigDict(validate_default=True)

    key_dir: Path = Path("~/.ssh")
    ssh_config_path: Path = Path("~/.ssh/config")
    log_dir: Path = Path("~/.keystrap/logs")

    connect_timeout: float = Field(default=15.0, gt=0)
    command_timeout: float = Field(default=60.0, gt=0)
    known_hosts_policy: Literal["auto-add", "reject"] = "auto-add"

    sshd_config_path: str = "/etc/ssh/sshd_config"
    sshd_backup_suffix: str = ".backup"
    rhel_service: str = "sshd"
    debian_service: str = "ssh"
    use_sudo: bool = True
    validate_sshd_config: bool = True

    @field_validator("key_dir", "ssh_config_path", "log_dir", mode="after")
    @classmethod
    def _expand(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def sshd_backup_path(self) -> str:
        return f"{self.sshd_config_path}{self.sshd_backup_suffix}"
