# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/errors.py
from __future__ import annotations

from enum import Enum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CommandResult


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    KEY_GENERATION = "KeyGenerationError"
    CONNECTION = "ConnectionError"
    REMOTE_COMMAND = "RemoteCommandError"
    CONFIG_MUTATION = "ConfigMutationError"
    CANCELLED = "Cancelled"


class BootstrapError(RuntimeError):
    """Base class for failures that abort a bootstrap run."""

    kind: ErrorKind = ErrorKind.REMOTE_COMMAND

    def __init__(self, message: str, *, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class KeyGenerationError(BootstrapError):
    """ssh-keygen failed or left no key files behind."""

    kind = ErrorKind.KEY_GENERATION


class RemoteConnectionError(BootstrapError, ConnectionError):
    """Handshake, authentication or network failure. Never retried."""

    kind = ErrorKind.CONNECTION


class RemoteCommandError(BootstrapError):
    """A remote command exited non-zero or timed out."""

    kind = ErrorKind.REMOTE_COMMAND

    def __init__(
        self,
        message: str,
        *,
        label: Optional[str] = None,
        result: Optional["CommandResult"] = None,
        step: Optional[str] = None,
    ):
        super().__init__(message, step=step)
        self.label = label
        self.result = result


class ConfigMutationError(BootstrapError):
    """The local SSH client config could not be read or written."""

    kind = ErrorKind.CONFIG_MUTATION


class BootstrapCancelled(BootstrapError):
    kind = ErrorKind.CANCELLED
