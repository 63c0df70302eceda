"""
Zeshto Vision — Logging & Structured Audit Trail
================================================
Console logging setup for all modules plus a JSONL audit log of
session events (startup, readiness transitions, analyses, errors).

Key Features:
  - JSONL (one JSON object per line)
  - Thread-safe writes (scheduler thread + caller thread)
  - NumPy-aware serialization
  - One AuditLogger per session, no global instance
"""

import json
import logging
import os
import sys
import threading
import time
from typing import Any, Dict, Optional

import numpy as np


_FORMAT = "[%(asctime)s] %(name)-16s %(levelname)-7s %(message)s"


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured console logger for Zeshto modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def configure_logging(level: str = "INFO") -> None:
    """Root-level console logging for the launcher."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=_FORMAT,
        datefmt="%H:%M:%S",
    )


class ZeshtoJSONEncoder(json.JSONEncoder):
    """Handles NumPy types and objects exposing to_dict()."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, bytes):
            return f"<{len(obj)} bytes>"
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


class AuditLogger:
    """Append-only JSONL audit log for one camera session."""

    FILE_NAME = "zeshto_audit.jsonl"

    def __init__(self, log_dir: str = "logs", file_name: Optional[str] = None):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, file_name or self.FILE_NAME)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "system_startup",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None) -> None:
        """Append one entry. Silently ignored after close()."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        line = json.dumps(entry, cls=ZeshtoJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def warn(self, message: str, context: Optional[Dict] = None) -> None:
        logging.getLogger("ZeshtoAudit").warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[BaseException] = None) -> None:
        logging.getLogger("ZeshtoAudit").error(message)
        err_details = str(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self) -> None:
        """Clean shutdown; idempotent."""
        if self._file.closed:
            return
        self.log({"message": "Audit logger shutting down"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            if not self._file.closed:
                self._file.close()
