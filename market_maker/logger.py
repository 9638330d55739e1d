"""Cycle journal for the market maker."""

import json
import os
import threading
from dataclasses import asdict

from market_maker.models import CycleLog


class CycleJournal:
    """Handles structured logging of engine cycles to JSONL format."""

    SENSITIVE_PATTERNS = (
        "private_key", "secret", "password", "api-key", "api_key", "seed", "mnemonic", "credential",
    )

    def __init__(self, log_file: str):
        """
        Initialize journal with output file path.

        Args:
            log_file: Path to JSONL log file (will be created if doesn't exist)
        """
        self.log_file = log_file
        self._lock = threading.Lock()

        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

    def log_cycle(self, cycle_log: CycleLog) -> None:
        """
        Append cycle log to JSONL file.

        Writes one JSON object per line in append-only mode and flushes after
        each write. Several asset loops share one journal.

        Args:
            cycle_log: Complete cycle log record
        """
        log_dict = self._sanitize_log(asdict(cycle_log))

        with self._lock:
            with open(self.log_file, "a") as f:
                json.dump(log_dict, f)
                f.write("\n")
                f.flush()

    def _sanitize_log(self, log_dict: dict) -> dict:
        """
        Redact string values that look like they carry key material.

        Args:
            log_dict: Log dictionary to sanitize

        Returns:
            Sanitized log dictionary
        """
        for key, value in log_dict.items():
            if not isinstance(value, str):
                continue
            lower_value = value.lower()
            if any(pattern in lower_value for pattern in self.SENSITIVE_PATTERNS):
                log_dict[key] = "[REDACTED]"
        return log_dict
