# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/keystrap/logging/log.py

from __future__ import annotations

import logging
from pathlib import Path
from datetime import datetime, timezone
import uuid

MASK = "******"


class RedactingFilter(logging.Filter):
    """
    Masks registered secrets (the login password) in the rendered message
    and traceback before any handler writes the record.
    """

    def __init__(self):
        super().__init__()
        self.secrets: set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        msg = record.getMessage()
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        for secret in sorted(self.secrets, key=len, reverse=True):
            msg = msg.replace(secret, MASK)
            if record.exc_text:
                record.exc_text = record.exc_text.replace(secret, MASK)
        record.msg, record.args = msg, None
        return True


_redactor = RedactingFilter()


def redact(secret: str | None) -> None:
    """Keep `secret` out of every keystrap log handler from now on."""
    if secret:
        _redactor.secrets.add(secret)


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "keystrap",
    verbose: bool = False,
    console: bool = True,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - per-run log file with the full DEBUG trace
      - console output (INFO, or DEBUG when --debug is passed)
      - password redaction on both handlers
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    if base_dir is None:
        base_dir = Path.home() / ".keystrap" / "logs"
    base_dir = Path(base_dir).expanduser()
    base_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)
    fh.addFilter(_redactor)
    logger.addHandler(fh)

    if console:
        ch = logging.StreamHandler()
        ch.setLevel(logging.DEBUG if verbose else logging.INFO)
        ch.setFormatter(formatter)
        ch.addFilter(_redactor)
        logger.addHandler(ch)

    logger.debug("=== keystrap run started ===")
    logger.debug(f"run_id={run_id}")
    logger.debug(f"log_file={log_path}")

    return logger, run_id, log_path
