# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/bootstrap/steps.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..config.models import KeystrapSettings
from ..models import BootstrapRequest, KeyPair
from ..remote.mutator import RemoteAuthMutator
from ..remote.session import RemoteSession


class BootstrapState(str, Enum):
    INIT = "Init"
    KEY_READY = "KeyReady"
    CONFIG_MERGED = "ConfigMerged"
    SESSION_OPEN = "SessionOpen"
    REMOTE_DIR_READY = "RemoteDirReady"
    AUTHORIZED_KEYS_READY = "AuthorizedKeysReady"
    KEY_INSTALLED = "KeyInstalled"
    PUBKEY_AUTH_ENABLED = "PubkeyAuthEnabled"
    BACKUP_TAKEN = "BackupTaken"
    PASSWORD_AUTH_DISABLED = "PasswordAuthDisabled"
    SERVICE_RESTARTED = "ServiceRestarted"
    COMPLETED = "Completed"
    FAILED = "Failed"


# step identifiers, in execution order
ENSURE_KEY_PAIR = "ensure_key_pair"
MERGE_HOST_CONFIG = "merge_host_config"
OPEN_SESSION = "open_session"
ENSURE_REMOTE_SSH_DIR = "ensure_remote_ssh_dir"
ENSURE_AUTHORIZED_KEYS = "ensure_authorized_keys"
INSTALL_PUBLIC_KEY = "install_public_key"
ENABLE_PUBKEY_AUTH = "enable_pubkey_auth"
BACKUP_SSHD_CONFIG = "backup_sshd_config"
DISABLE_PASSWORD_AUTH = "disable_password_auth"
RESTART_SSHD = "restart_sshd"


@dataclass
class BootstrapContext:
    """
    Mutable run state shared by the steps of one host run.
    """
    request: BootstrapRequest
    settings: KeystrapSettings
    key_pair: Optional[KeyPair] = None
    session: Optional[RemoteSession] = None
    mutator: Optional[RemoteAuthMutator] = None
    current_step: Optional[str] = None
    facts: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Step:
    """
    One transition of the bootstrap machine.

    `execute` returns the state the step produces, or raises BootstrapError.
    `optional` steps belong to the disable-password-auth tail.
    """
    name: str
    produces: BootstrapState
    action: Callable[[BootstrapContext], None]
    optional: bool = False

    def execute(self, ctx: BootstrapContext) -> BootstrapState:
        self.action(ctx)
        return self.produces
