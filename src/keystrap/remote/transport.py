# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/remote/transport.py

from __future__ import annotations

import logging
import socket
from typing import Optional, Protocol

import paramiko

from ..errors import RemoteCommandError, RemoteConnectionError
from ..models import CommandResult, Credentials, Target

log = logging.getLogger("keystrap")


class Transport(Protocol):
    """
    The only thing remote steps need from a connection: run a command,
    get exit status and output back.
    """

    def exec(
        self,
        command: str,
        *,
        stdin: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult: ...

    def close(self) -> None: ...


class ParamikoTransport:
    """
    Password-authenticated paramiko connection.
    """

    def __init__(self, client: paramiko.SSHClient, target: Target):
        self.client = client
        self.target = target

    @classmethod
    def connect(
        cls,
        target: Target,
        credentials: Credentials,
        *,
        timeout: float = 15.0,
        known_hosts_policy: str = "auto-add",
    ) -> "ParamikoTransport":
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if known_hosts_policy == "reject":
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        log.debug("Connecting to %s as %s", target, credentials.username)
        try:
            client.connect(
                hostname=target.host,
                port=target.port,
                username=credentials.username,
                password=credentials.password,
                look_for_keys=False,
                allow_agent=False,
                timeout=timeout,
                banner_timeout=timeout,
                auth_timeout=timeout,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise RemoteConnectionError(
                f"Authentication failed for {credentials.username}@{target}"
            ) from e
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            client.close()
            raise RemoteConnectionError(
                f"Cannot connect to {target}: {type(e).__name__}: {e}"
            ) from e

        log.debug("Connected to %s", target)
        return cls(client, target)

    def exec(
        self,
        command: str,
        *,
        stdin: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        try:
            chan_in, stdout, stderr = self.client.exec_command(command, timeout=timeout)
            if stdin is not None:
                chan_in.write(stdin)
                chan_in.flush()
            chan_in.channel.shutdown_write()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            rc = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            raise RemoteCommandError(
                f"Remote command timed out after {timeout}s on {self.target}"
            ) from e
        except (paramiko.SSHException, OSError) as e:
            raise RemoteCommandError(
                f"Remote command failed on {self.target}: {type(e).__name__}: {e}"
            ) from e
        return CommandResult(exit_code=rc, stdout=out, stderr=err)

    def close(self) -> None:
        self.client.close()
        log.debug("Disconnected from %s", self.target)
