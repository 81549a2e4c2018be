# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/models.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

log = logging.getLogger("keystrap")

DEFAULT_SSH_PORT = 22

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off", ""}


@dataclass(frozen=True)
class Target:
    """
    Where to connect: address and SSH port.
    """
    host: str
    port: int = DEFAULT_SSH_PORT

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class KeyPair:
    """
    A local ed25519 key pair, one per host id. Never regenerated once present.
    """
    host_id: str
    private_key_path: Path
    public_key_path: Path
    public_key_material: str


@dataclass(frozen=True)
class HostConfigEntry:
    host_id: str
    identity_file: Path
    user: str
    port: int = DEFAULT_SSH_PORT
    # only rendered when the host id is an alias rather than the address
    hostname: Optional[str] = None

    def render(self) -> str:
        lines = [f"Host {self.host_id}"]
        if self.hostname and self.hostname != self.host_id:
            lines.append(f"    HostName {self.hostname}")
        lines += [
            f"    IdentityFile {self.identity_file}",
            f"    User {self.user}",
            f"    Port {self.port}",
        ]
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class BootstrapRequest(BaseModel):
    """
    Operator inputs for one host run.

    Malformed port / flag values are not errors: they fall back to the
    defaults (22 / False) with a warning.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = Field(default="", repr=False)
    port: int = DEFAULT_SSH_PORT
    disable_password_auth: bool = False
    host_id: Optional[str] = Field(default=None, min_length=1)

    @field_validator("host", "username", "host_id", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("port", mode="before")
    @classmethod
    def _normalize_port(cls, v: Any) -> int:
        if v is None:
            return DEFAULT_SSH_PORT
        if isinstance(v, bool):
            log.warning("Invalid value for SSH port (%r). Using default value of %d.", v, DEFAULT_SSH_PORT)
            return DEFAULT_SSH_PORT
        try:
            port = int(str(v).strip())
        except ValueError:
            log.warning("Invalid value for SSH port (%r). Using default value of %d.", v, DEFAULT_SSH_PORT)
            return DEFAULT_SSH_PORT
        if not 1 <= port <= 65535:
            log.warning("SSH port %d out of range. Using default value of %d.", port, DEFAULT_SSH_PORT)
            return DEFAULT_SSH_PORT
        return port

    @field_validator("disable_password_auth", mode="before")
    @classmethod
    def _normalize_flag(cls, v: Any) -> bool:
        if isinstance(v, bool):
            return v
        if v is None:
            return False
        s = str(v).strip().lower()
        if s in _TRUE:
            return True
        if s not in _FALSE:
            log.warning(
                "Invalid value for disable-password-auth (%r). Using default value of false.", v
            )
        return False

    @model_validator(mode="before")
    @classmethod
    def _default_host_id(cls, data: Any) -> Any:
        # only a missing id defaults to the host; a blank one is rejected
        if isinstance(data, dict) and data.get("host_id") is None:
            data = {**data, "host_id": data.get("host")}
        return data

    @property
    def target(self) -> Target:
        return Target(host=self.host, port=self.port)

    @property
    def credentials(self) -> Credentials:
        return Credentials(username=self.username, password=self.password)
