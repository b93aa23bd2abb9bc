# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/tpm/logging/log.py

from __future__ import annotations

import logging
import os
from pathlib import Path
from datetime import datetime, timezone
import uuid

def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "tpm",
    verbose: bool = False,
    quiet: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - full trace log file
      - console output on stderr (stdout carries single-host results)
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    if base_dir is None:
        env = os.environ.get("TPM_LOG_DIR")
        base_dir = Path(env) if env else Path.home() / ".tpm" / "logs"
    base_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File = FULL TRACE
    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    # Console = INFO by default, DEBUG with --verbose, WARNING for remote sub-commands
    ch = logging.StreamHandler()
    if verbose:
        ch.setLevel(logging.DEBUG)
    elif quiet:
        ch.setLevel(logging.WARNING)
    else:
        ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.debug("=== tpm run started ===")
    logger.debug(f"run_id={run_id}")
    logger.debug(f"log_file={log_path}")

    return logger, run_id, log_path
