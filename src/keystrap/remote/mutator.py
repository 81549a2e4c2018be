# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/remote/mutator.py

from __future__ import annotations

import base64
import logging
import re
import shlex
import textwrap
from typing import Optional

from ..config.models import KeystrapSettings
from ..errors import RemoteCommandError
from ..models import CommandResult
from .session import RemoteSession

log = logging.getLogger("keystrap")

SSH_DIR = '"$HOME/.ssh"'
AUTHORIZED_KEYS = '"$HOME/.ssh/authorized_keys"'

_DIRECTIVE = re.compile(r"^[A-Za-z]+$")
_VALUE = re.compile(r"^[A-Za-z0-9_-]+$")

# sshd keywords are case-insensitive and the first value wins. Lines after
# the first Match belong to conditional blocks, so the global line must
# land before it.
_REWRITE_AWK = r"""
BEGIN {
    any = "^[ \t]*#?[ \t]*" n "([ \t].*)?$"
    active = "^[ \t]*" n "([ \t].*)?$"
}
{ low = tolower($0) }
!inblock && low ~ /^[ \t]*match([ \t]|$)/ {
    if (!done) { print l; done = 1 }
    inblock = 1
    print
    next
}
inblock {
    if (low ~ active) { match($0, /^[ \t]*/); print substr($0, 1, RLENGTH) l } else print
    next
}
low ~ any { if (!done) { print l; done = 1 } next }
{ print }
END { if (!done) print l }
"""

_COUNT_AWK = r"""
tolower($0) ~ /^[ \t]*match([ \t]|$)/ { exit }
$0 == l { c++ }
END { print c + 0 }
"""


def _q(s: str) -> str:
    return shlex.quote(s)


class RemoteAuthMutator:
    """
    Idempotent remote operations for key install and sshd hardening.

    Every operation is safe to repeat; any non-zero exit raises
    RemoteCommandError and nothing is retried.
    """

    def __init__(self, session: RemoteSession, settings: Optional[KeystrapSettings] = None):
        self.session = session
        self.settings = settings or KeystrapSettings()

    # ------------------ ~/.ssh ------------------

    def ensure_remote_ssh_dir(self) -> None:
        self._run("create ~/.ssh", f"mkdir -p {SSH_DIR} && chmod 700 {SSH_DIR}")

    def ensure_authorized_keys_file(self) -> None:
        self._run(
            "create authorized_keys",
            f"f={AUTHORIZED_KEYS}; [ -e \"$f\" ] || : > \"$f\"; chmod 600 \"$f\"",
        )

    def install_public_key(self, material: str) -> bool:
        """
        Append the key line unless an identical line is already present.
        Returns True when the line was appended.
        """
        key = material.strip()
        if not key or "\n" in key or "\r" in key:
            raise ValueError("public key material must be a single non-empty line")

        # base64 keeps quotes, $ and backticks in the comment away from the shell
        encoded = base64.b64encode(key.encode("utf-8")).decode("ascii")
        script = textwrap.dedent(f"""\
            f={AUTHORIZED_KEYS}
            key="$(printf '%s' '{encoded}' | base64 -d)" || exit 1
            [ -n "$key" ] || exit 1
            if grep -qxF -e "$key" "$f" 2>/dev/null; then echo present; exit 0; fi
            if [ -s "$f" ] && [ -n "$(tail -c 1 "$f")" ]; then printf '\\n' >> "$f"; fi
            printf '%s\\n' "$key" >> "$f" && echo added
        """)
        result = self._run("install public key", script)
        status = result.stdout.strip().splitlines()[-1:] or [""]
        if status[0] == "present":
            log.info("Public key already present in authorized_keys.")
            return False
        if status[0] == "added":
            log.info("Public key appended to authorized_keys.")
            self._verify_key(encoded)
            return True
        raise RemoteCommandError(
            f"install public key: unexpected output {result.stdout.strip()!r}",
            label="install public key",
            result=result,
        )

    def _verify_key(self, encoded: str) -> None:
        script = textwrap.dedent(f"""\
            f={AUTHORIZED_KEYS}
            key="$(printf '%s' '{encoded}' | base64 -d)" || exit 1
            n="$(grep -cxF -e "$key" "$f" 2>/dev/null)" || n=0
            total="$(wc -l < "$f")" || exit 1
            echo "$n $total"
        """)
        result = self._run("verify public key", script)
        parts = result.stdout.split()
        found = int(parts[0]) if parts and parts[0].isdigit() else 0
        if found < 1:
            raise RemoteCommandError(
                "verify public key: key line not found in authorized_keys after install",
                label="verify public key",
                result=result,
            )
        if found > 1:
            log.warning("Public key appears %d times in authorized_keys.", found)
        if len(parts) > 1 and parts[1].isdigit():
            log.info("Authorized keys line count: %s", parts[1])

    # ------------------ sshd_config ------------------

    def set_directive(self, name: str, value: str) -> None:
        """
        Rewrite `name` (commented out or not, any value, any keyword case)
        to `name value` and collapse duplicates, so exactly one global
        `name value` line is left.

        A missing line goes in before the first `Match` block, never after
        it; active occurrences inside `Match` blocks are set to the same value.
        """
        if not _DIRECTIVE.match(name) or not _VALUE.match(value):
            raise ValueError(f"refusing unsafe sshd directive {name!r} {value!r}")

        line = f"{name} {value}"
        script = "\n".join([
            "set -e",
            f"f={_q(self.settings.sshd_config_path)}",
            f'awk -v n={_q(name.lower())} -v l={_q(line)} {_q(_REWRITE_AWK)} "$f" > "$f.keystrap.tmp"',
            'cat "$f.keystrap.tmp" > "$f"',
            'rm -f "$f.keystrap.tmp"',
            f'awk -v l={_q(line)} {_q(_COUNT_AWK)} "$f"',
        ]) + "\n"
        result = self._run(f"set {name}", script, sudo=True)
        count = (result.stdout.strip().splitlines() or [""])[-1]
        if count != "1":
            raise RemoteCommandError(
                f"set {name}: expected exactly one global '{line}' line, found {count!r}",
                label=f"set {name}",
                result=result,
            )
        log.info("%s set in %s.", line, self.settings.sshd_config_path)

    def enable_pubkey_auth(self) -> None:
        self.set_directive("PubkeyAuthentication", "yes")

    def backup_sshd_config(self) -> str:
        """Copy sshd_config to its backup path. Overwrites the previous backup."""
        backup = self.settings.sshd_backup_path
        self._run(
            "backup sshd_config",
            f"cp -p {_q(self.settings.sshd_config_path)} {_q(backup)}",
            sudo=True,
        )
        log.info("sshd_config backed up to %s", backup)
        return backup

    def disable_password_auth_directive(self) -> None:
        self.set_directive("PasswordAuthentication", "no")

    # ------------------ service ------------------

    def resolve_service_name(self) -> str:
        """
        RHEL/CentOS ship the unit as sshd.service, Debian/Ubuntu as ssh.service.
        """
        rhel = self.settings.rhel_service
        listing = (
            "systemctl list-units --type=service --no-legend --no-pager 2>/dev/null"
            f" | grep -qF {_q(rhel + '.service')}"
        )
        result = self.session.exec(listing)
        name = rhel if result.ok else self.settings.debian_service
        log.debug("SSH service resolved to %s", name)
        return name

    def restart_sshd(self) -> str:
        if self.settings.validate_sshd_config:
            self._run(
                "validate sshd_config",
                f'PATH="$PATH:/usr/sbin:/sbin" sshd -t -f {_q(self.settings.sshd_config_path)}',
                sudo=True,
            )

        service = self.resolve_service_name()
        result = self.session.exec(f"systemctl restart {_q(service)}", sudo=True)
        if not result.ok:
            log.error(
                "RESTART OF %s FAILED on %s (exit %d): %s - sshd may still be running the old configuration",
                service, self.session.target, result.exit_code, result.stderr.strip(),
            )
            raise RemoteCommandError(
                f"systemctl restart {service} failed (exit {result.exit_code}): {result.stderr.strip()}",
                label="restart sshd",
                result=result,
            )
        log.info("SSH service %s restarted.", service)
        return service

    def disable_password_auth(self) -> str:
        """Backup, switch PasswordAuthentication off, restart sshd."""
        self.backup_sshd_config()
        self.disable_password_auth_directive()
        return self.restart_sshd()

    # ------------------ internals ------------------

    def _run(self, label: str, command: str, *, sudo: bool = False) -> CommandResult:
        result = self.session.exec(command, sudo=sudo)
        if not result.ok:
            raise RemoteCommandError(
                f"{label} failed (exit {result.exit_code}): {result.stderr.strip()}",
                label=label,
                result=result,
            )
        return result
