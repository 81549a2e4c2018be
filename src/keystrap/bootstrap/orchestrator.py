# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/bootstrap/orchestrator.py

from __future__ import annotations

import functools
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, ContextManager, List, Optional

from ..config.models import KeystrapSettings
from ..errors import BootstrapCancelled, BootstrapError, ErrorKind
from ..keys.manager import KeyPairManager
from ..models import BootstrapRequest, Credentials, HostConfigEntry, Target
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    BootstrapStarted,
    BootstrapSummary,
    StepFailed,
    StepSkipped,
    StepStarted,
    StepSucceeded,
)
from ..remote.mutator import RemoteAuthMutator
from ..remote.session import RemoteSession, open_session
from ..sshconfig.merger import HostConfigMerger
from .steps import (
    BootstrapContext,
    BootstrapState,
    Step,
    ENSURE_KEY_PAIR,
    MERGE_HOST_CONFIG,
    OPEN_SESSION,
    ENSURE_REMOTE_SSH_DIR,
    ENSURE_AUTHORIZED_KEYS,
    INSTALL_PUBLIC_KEY,
    ENABLE_PUBKEY_AUTH,
    BACKUP_SSHD_CONFIG,
    DISABLE_PASSWORD_AUTH,
    RESTART_SSHD,
)

log = logging.getLogger("keystrap")

SessionFactory = Callable[[Target, Credentials], ContextManager[RemoteSession]]


@dataclass
class BootstrapOutcome:
    host_id: str
    completed_steps: List[str] = field(default_factory=list)
    states: List[BootstrapState] = field(default_factory=lambda: [BootstrapState.INIT])
    final_state: BootstrapState = BootstrapState.INIT
    error_kind: Optional[ErrorKind] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.final_state is BootstrapState.COMPLETED

    def advance(self, step: str, state: BootstrapState) -> None:
        self.completed_steps.append(step)
        self.states.append(state)
        self.final_state = state

    def fail(self, step: Optional[str], exc: BootstrapError) -> None:
        self.failed_step = step
        self.error_kind = exc.kind
        self.error = str(exc)
        self.states.append(BootstrapState.FAILED)
        self.final_state = BootstrapState.FAILED

    def complete(self) -> None:
        self.states.append(BootstrapState.COMPLETED)
        self.final_state = BootstrapState.COMPLETED

    def summary(self) -> str:
        if self.succeeded:
            return f"{self.host_id}: Completed ({len(self.completed_steps)} steps)"
        return (
            f"{self.host_id}: Failed at {self.failed_step} "
            f"[{self.error_kind.value if self.error_kind else '?'}] {self.error}"
        )


# ------------------ remote step actions ------------------

def _ensure_remote_ssh_dir(ctx: BootstrapContext) -> None:
    ctx.mutator.ensure_remote_ssh_dir()


def _ensure_authorized_keys(ctx: BootstrapContext) -> None:
    ctx.mutator.ensure_authorized_keys_file()


def _install_public_key(ctx: BootstrapContext) -> None:
    ctx.facts["key_appended"] = ctx.mutator.install_public_key(ctx.key_pair.public_key_material)


def _enable_pubkey_auth(ctx: BootstrapContext) -> None:
    ctx.mutator.enable_pubkey_auth()


def _backup_sshd_config(ctx: BootstrapContext) -> None:
    ctx.facts["backup_path"] = ctx.mutator.backup_sshd_config()


def _disable_password_auth(ctx: BootstrapContext) -> None:
    ctx.mutator.disable_password_auth_directive()


def _restart_sshd(ctx: BootstrapContext) -> None:
    ctx.facts["service"] = ctx.mutator.restart_sshd()


def plan_steps(disable_password_auth: bool) -> List[str]:
    """Ordered step names a run with this flag would execute."""
    names = [ENSURE_KEY_PAIR, MERGE_HOST_CONFIG, OPEN_SESSION]
    for step in BootstrapOrchestrator.remote_steps():
        if step.optional and not disable_password_auth:
            continue
        names.append(step.name)
    return names


class BootstrapOrchestrator:
    """
    Drives one host from password-only to key-capable (optionally key-only)
    SSH authentication as a linear state machine:

      Init -> KeyReady -> ConfigMerged -> SessionOpen -> RemoteDirReady
           -> AuthorizedKeysReady -> KeyInstalled -> PubkeyAuthEnabled
           [-> BackupTaken -> PasswordAuthDisabled -> ServiceRestarted]
           -> Completed

    Any step failure ends in Failed; nothing after it runs and the remote
    session is still closed. Every step is idempotent, so re-running after a
    failure resumes rather than duplicates.
    """

    def __init__(
        self,
        request: BootstrapRequest,
        *,
        settings: Optional[KeystrapSettings] = None,
        key_manager: Optional[KeyPairManager] = None,
        config_merger: Optional[HostConfigMerger] = None,
        session_factory: Optional[SessionFactory] = None,
        bus: Optional[EventBus] = None,
        cancel_event: Optional[threading.Event] = None,
        run_id: Optional[str] = None,
    ):
        self.request = request
        self.settings = settings or KeystrapSettings()
        self.key_manager = key_manager or KeyPairManager(self.settings.key_dir)
        self.config_merger = config_merger or HostConfigMerger(self.settings.ssh_config_path)
        self.session_factory = session_factory or functools.partial(open_session, settings=self.settings)
        self.bus = bus or EventBus()
        self.cancel_event = cancel_event or threading.Event()
        self.run_id = run_id or str(uuid.uuid4())

    # ------------------ step table ------------------

    def local_steps(self) -> List[Step]:
        return [
            Step(ENSURE_KEY_PAIR, BootstrapState.KEY_READY, self._ensure_key_pair),
            Step(MERGE_HOST_CONFIG, BootstrapState.CONFIG_MERGED, self._merge_host_config),
        ]

    @staticmethod
    def remote_steps() -> List[Step]:
        return [
            Step(ENSURE_REMOTE_SSH_DIR, BootstrapState.REMOTE_DIR_READY, _ensure_remote_ssh_dir),
            Step(ENSURE_AUTHORIZED_KEYS, BootstrapState.AUTHORIZED_KEYS_READY, _ensure_authorized_keys),
            Step(INSTALL_PUBLIC_KEY, BootstrapState.KEY_INSTALLED, _install_public_key),
            Step(ENABLE_PUBKEY_AUTH, BootstrapState.PUBKEY_AUTH_ENABLED, _enable_pubkey_auth),
            Step(BACKUP_SSHD_CONFIG, BootstrapState.BACKUP_TAKEN, _backup_sshd_config, optional=True),
            Step(DISABLE_PASSWORD_AUTH, BootstrapState.PASSWORD_AUTH_DISABLED, _disable_password_auth, optional=True),
            Step(RESTART_SSHD, BootstrapState.SERVICE_RESTARTED, _restart_sshd, optional=True),
        ]

    # ------------------ public API ------------------

    def run(self) -> BootstrapOutcome:
        req = self.request
        ctx = BootstrapContext(request=req, settings=self.settings)
        outcome = BootstrapOutcome(host_id=req.host_id)

        log.info(
            "Setting up SSH on %s (user=%s, port=%d, disable_password_auth=%s)...",
            req.host, req.username, req.port, req.disable_password_auth,
        )
        self.bus.emit(BootstrapStarted(
            port=req.port, user=req.username,
            disable_password_auth=req.disable_password_auth, **self._ev(),
        ))

        try:
            for step in self.local_steps():
                self._execute(step, ctx, outcome)

            self._begin(OPEN_SESSION, ctx)
            t0 = time.time()
            with self.session_factory(req.target, req.credentials) as session:
                ctx.session = session
                ctx.mutator = RemoteAuthMutator(session, self.settings)
                self._advance(OPEN_SESSION, BootstrapState.SESSION_OPEN, outcome, t0)

                for step in self.remote_steps():
                    if step.optional and not req.disable_password_auth:
                        self.bus.emit(StepSkipped(
                            step=step.name, reason="password authentication left enabled", **self._ev(),
                        ))
                        continue
                    self._execute(step, ctx, outcome)
        except BootstrapError as exc:
            step = exc.step or ctx.current_step
            outcome.fail(step, exc)
            log.error("Step %s failed: %s", step, exc)
            self.bus.emit(StepFailed(step=step or "?", kind=exc.kind.value, error=str(exc), **self._ev()))
        else:
            outcome.complete()
            log.info("SSH setup completed successfully for %s.", req.host_id)

        self.bus.emit(BootstrapSummary(
            status=outcome.final_state.value,
            completed=list(outcome.completed_steps),
            failed_step=outcome.failed_step,
            error=outcome.error,
            **self._ev(),
        ))
        return outcome

    # ------------------ local step actions ------------------

    def _ensure_key_pair(self, ctx: BootstrapContext) -> None:
        ctx.key_pair = self.key_manager.ensure_key_pair(ctx.request.host_id)

    def _merge_host_config(self, ctx: BootstrapContext) -> None:
        req = ctx.request
        entry = HostConfigEntry(
            host_id=req.host_id,
            hostname=req.host,
            identity_file=ctx.key_pair.private_key_path,
            user=req.username,
            port=req.port,
        )
        ctx.facts["config_appended"] = self.config_merger.upsert_host(entry)

    # ------------------ machinery ------------------

    def _ev(self) -> dict:
        return new_ctx(host=self.request.host_id, run_id=self.run_id)

    def _begin(self, name: str, ctx: BootstrapContext) -> None:
        if self.cancel_event.is_set():
            raise BootstrapCancelled(f"Run cancelled before {name}", step=name)
        ctx.current_step = name
        log.debug("-> %s", name)
        self.bus.emit(StepStarted(step=name, **self._ev()))

    def _advance(self, name: str, state: BootstrapState, outcome: BootstrapOutcome, t0: float) -> None:
        outcome.advance(name, state)
        self.bus.emit(StepSucceeded(
            step=name, state=state.value, duration_ms=int((time.time() - t0) * 1000), **self._ev(),
        ))

    def _execute(self, step: Step, ctx: BootstrapContext, outcome: BootstrapOutcome) -> None:
        self._begin(step.name, ctx)
        t0 = time.time()
        try:
            state = step.execute(ctx)
        except BootstrapError as exc:
            if exc.step is None:
                exc.step = step.name
            raise
        self._advance(step.name, state, outcome, t0)
