# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/keystrap/sshconfig/merger.py

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import ConfigMutationError
from ..models import HostConfigEntry

log = logging.getLogger("keystrap")


def _host_decl(line: str) -> Optional[str]:
    """Return the single pattern of a `Host <pattern>` line, else None."""
    parts = line.strip().split()
    if len(parts) == 2 and parts[0].lower() == "host":
        return parts[1]
    return None


class HostConfigMerger:
    """
    Append-only merge of per-host blocks into an OpenSSH client config.

    An existing block for the same host id is never rewritten, even when its
    settings differ from the requested ones; that drift is only reported.
    """

    def __init__(self, config_path: str | Path = "~/.ssh/config"):
        self.config_path = Path(config_path).expanduser()

    def upsert_host(self, entry: HostConfigEntry) -> bool:
        """
        Returns True if a block was appended, False if one already existed.
        """
        content = self._read()

        existing = self._find_block(content, entry.host_id)
        if existing is not None:
            log.info("Host %s already exists in SSH config.", entry.host_id)
            self._report_drift(entry, existing)
            return False

        prefix = ""
        if content and not content.endswith("\n"):
            prefix = "\n"
        if content:
            prefix += "\n"

        try:
            self._ensure_file()
            with self.config_path.open("a", encoding="utf-8", newline="") as f:
                f.write(prefix + entry.render())
        except OSError as e:
            raise ConfigMutationError(f"Cannot write SSH config {self.config_path}: {e}") from e

        log.info("Updated SSH config at %s", self.config_path)
        return True

    def read_hosts(self) -> List[str]:
        return [h for h in (_host_decl(ln) for ln in self._read().splitlines()) if h]

    # ------------------ internals ------------------

    def _read(self) -> str:
        if not self.config_path.exists():
            return ""
        try:
            with self.config_path.open("r", encoding="utf-8", newline="") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigMutationError(f"Cannot read SSH config {self.config_path}: {e}") from e

    def _ensure_file(self) -> None:
        if self.config_path.exists():
            return
        parent = self.config_path.parent
        if not parent.is_dir():
            parent.mkdir(parents=True, mode=0o700)
        # create with owner-only permissions; ssh refuses group/world-writable configs
        fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        os.close(fd)
        log.debug("Created SSH config %s", self.config_path)

    @staticmethod
    def _find_block(content: str, host_id: str) -> Optional[Dict[str, str]]:
        found = False
        data: Dict[str, str] = {}
        for line in content.splitlines():
            decl = _host_decl(line)
            if decl is not None or line.strip().lower().startswith(("host ", "match ")):
                if found:
                    break
                found = decl == host_id
                continue
            if found:
                kv = line.strip().split(None, 1)
                if len(kv) == 2 and not kv[0].startswith("#"):
                    data.setdefault(kv[0].lower(), kv[1])
        return data if found else None

    @staticmethod
    def _report_drift(entry: HostConfigEntry, existing: Dict[str, str]) -> None:
        wanted = {
            "identityfile": str(entry.identity_file),
            "user": entry.user,
            "port": str(entry.port),
        }
        drift = {
            k: (existing.get(k), v) for k, v in wanted.items() if existing.get(k) != v
        }
        if drift:
            log.warning(
                "Existing SSH config block for %s differs from the requested settings "
                "and is left as-is: %s",
                entry.host_id,
                ", ".join(f"{k}: {have!r} (wanted {want!r})" for k, (have, want) in drift.items()),
            )
