# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/keys/manager.py

from __future__ import annotations

import hashlib
import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Callable

from ..errors import KeyGenerationError
from ..models import KeyPair

log = logging.getLogger("keystrap")

KEY_ALGORITHM = "ed25519"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def key_file_name(host_id: str) -> str:
    """
    id_ed25519_<host id>, with anything path-like replaced by '_'.
    A rewritten id gets a short hash of the raw id so 'web:1' and 'web_1'
    do not share a key.
    """
    safe = _UNSAFE.sub("_", host_id)
    if safe != host_id:
        safe += "-" + hashlib.sha256(host_id.encode("utf-8")).hexdigest()[:8]
    return f"id_{KEY_ALGORITHM}_{safe}"


class KeyPairManager:
    """
    Create-if-absent key pairs, one per host id, under a single key directory.
    """

    def __init__(
        self,
        key_dir: str | Path = "~/.ssh",
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        timeout: float = 30.0,
    ):
        self.key_dir = Path(key_dir).expanduser()
        self._run = runner
        self.timeout = timeout

    def paths_for(self, host_id: str) -> tuple[Path, Path]:
        private = self.key_dir / key_file_name(host_id)
        return private, Path(f"{private}.pub")

    def ensure_key_pair(self, host_id: str) -> KeyPair:
        if not host_id:
            raise ValueError("host_id must not be empty")

        self._ensure_key_dir()
        private, public = self.paths_for(host_id)

        if private.exists():
            if not public.exists():
                log.warning("Public half missing for %s - deriving it from the private key", private)
                self._derive_public_key(private, public)
            else:
                log.info("SSH key already exists at %s. Skipping key generation.", private)
            return self._load(host_id, private, public)

        log.info("Generating SSH key pair at %s...", private)
        cmd = [
            "ssh-keygen",
            "-t", KEY_ALGORITHM,
            "-f", str(private),
            "-N", "",
            "-C", f"keystrap@{host_id}",
            "-q",
        ]
        self._keygen(cmd, what="key generation")

        if not private.exists() or not public.exists():
            raise KeyGenerationError(
                f"ssh-keygen reported success but {private} / {public} are missing"
            )
        log.info("SSH key pair generated successfully.")
        return self._load(host_id, private, public)

    # ------------------ internals ------------------

    def _ensure_key_dir(self) -> None:
        if self.key_dir.is_dir():
            return
        try:
            self.key_dir.mkdir(parents=True, mode=0o700)
            # mkdir's mode is filtered by the umask
            os.chmod(self.key_dir, 0o700)
        except OSError as e:
            raise KeyGenerationError(f"Cannot create key directory {self.key_dir}: {e}") from e
        log.debug("Created key directory %s", self.key_dir)

    def _keygen(self, cmd: list[str], *, what: str) -> subprocess.CompletedProcess:
        log.debug("$ %s", " ".join(cmd))
        try:
            cp = self._run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise KeyGenerationError(f"ssh-keygen {what} could not run: {e}") from e

        if cp.returncode != 0:
            err = (cp.stderr or "").strip()
            raise KeyGenerationError(f"ssh-keygen {what} failed (exit {cp.returncode}): {err}")
        return cp

    def _derive_public_key(self, private: Path, public: Path) -> None:
        cp = self._keygen(["ssh-keygen", "-y", "-f", str(private)], what="public key derivation")
        material = (cp.stdout or "").strip()
        if not material:
            raise KeyGenerationError(f"ssh-keygen -y produced no public key for {private}")
        try:
            public.write_text(material + "\n", encoding="utf-8")
            os.chmod(public, 0o644)
        except OSError as e:
            raise KeyGenerationError(f"Cannot write {public}: {e}") from e

    def _load(self, host_id: str, private: Path, public: Path) -> KeyPair:
        try:
            material = public.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise KeyGenerationError(f"Cannot read public key {public}: {e}") from e
        if not material:
            raise KeyGenerationError(f"Public key {public} is empty")
        return KeyPair(
            host_id=host_id,
            private_key_path=private,
            public_key_path=public,
            public_key_material=material,
        )
