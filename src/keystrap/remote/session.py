# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/remote/session.py

from __future__ import annotations

import logging
import shlex
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from ..config.models import KeystrapSettings
from ..models import CommandResult, Credentials, Target
from .transport import ParamikoTransport, Transport

log = logging.getLogger("keystrap")

TransportFactory = Callable[..., Transport]


class RemoteSession:
    """
    Handle passed to remote steps. Wraps a transport and knows how to
    run a command through sudo with the login password on stdin.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        target: Target,
        password: str = "",
        use_sudo: bool = True,
        command_timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.target = target
        self._password = password
        self.use_sudo = use_sudo
        self.command_timeout = command_timeout

    def exec(self, command: str, *, sudo: bool = False) -> CommandResult:
        stdin = None
        if sudo and self.use_sudo:
            command = f"sudo -S -p '' sh -c {shlex.quote(command)}"
            stdin = self._password + "\n"
        log.debug("[%s] $ %s", self.target, command)
        result = self.transport.exec(command, stdin=stdin, timeout=self.command_timeout)
        log.debug("[%s][exit %d]", self.target, result.exit_code)
        if result.stdout.strip():
            log.debug("[%s][stdout]\n%s", self.target, result.stdout.rstrip())
        if result.stderr.strip():
            log.debug("[%s][stderr]\n%s", self.target, result.stderr.rstrip())
        return result


def _paramiko_factory(target: Target, credentials: Credentials, settings: KeystrapSettings) -> Transport:
    return ParamikoTransport.connect(
        target,
        credentials,
        timeout=settings.connect_timeout,
        known_hosts_policy=settings.known_hosts_policy,
    )


@contextmanager
def open_session(
    target: Target,
    credentials: Credentials,
    *,
    settings: Optional[KeystrapSettings] = None,
    transport_factory: TransportFactory = _paramiko_factory,
) -> Iterator[RemoteSession]:
    """
    Connect, yield a RemoteSession, and always disconnect - on success,
    on error and on KeyboardInterrupt alike.

    A failed connect raises RemoteConnectionError and there is nothing to close.
    """
    settings = settings or KeystrapSettings()
    transport = transport_factory(target, credentials, settings)
    log.info("Session opened to %s as %s", target, credentials.username)
    try:
        yield RemoteSession(
            transport,
            target=target,
            password=credentials.password,
            use_sudo=settings.use_sudo,
            command_timeout=settings.command_timeout,
        )
    finally:
        transport.close()
        log.info("Session to %s closed", target)
