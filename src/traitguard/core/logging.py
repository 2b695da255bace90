# Traitguard
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Traitguard.
#
# Traitguard is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
Traitguard -- Live Logger (v1.2.0)

Every generation, validation run and blocked field change is captured in
real time to a rotating log file that operators can tail.

LOG LOCATION:
    ~/.traitguard/logs/traitguard.log      (current)
    ~/.traitguard/logs/traitguard.log.1    (previous rotation)

    Override the folder with TRAITGUARD_LOG_DIR.

RULES:
    - Single log file, max 10 MB before rotation
    - Human-readable format with structured fields
    - WARNING and above are mirrored to stderr

USAGE:
    from traitguard.core.logging import get_logger
    log = get_logger()
    log.llm("Service", model="llama3.1", attempt=2, latency_ms=1500)
    log.validation("char-42", is_valid=False, attempts=3, blocked=2)
    log.blocked("char-42", "appearance.eyes.color", reason="Field is immutable")
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# =============================================================================
# CONSTANTS
# =============================================================================

MAX_LOG_FILE_BYTES = 10 * 1024 * 1024  # 10 MB per file
LOG_BACKUP_COUNT = 20
LOG_DIR = Path(os.environ.get("TRAITGUARD_LOG_DIR", Path.home() / ".traitguard" / "logs"))
LOG_FILE_NAME = "traitguard.log"


# =============================================================================
# FORMATTER
# =============================================================================


class TraitguardLogFormatter(logging.Formatter):
    """
    Format: TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {structured fields}

    Example:
    2026-02-09T17:30:46.500Z | LLM   | Service      | LLM call | model="llama3.1" attempt=1 latency_ms=1377
    2026-02-09T17:30:46.612Z | BLOCK | Validation   | Blocked appearance.eyes.color | reason="Field is immutable"
    """

    LEVEL_WIDTH = 5
    COMPONENT_WIDTH = 12

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        ts = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

        level = getattr(record, "tg_level", record.levelname)
        component = getattr(record, "component", "System")
        message = record.getMessage()

        fields = getattr(record, "fields", {})
        field_str = ""
        if fields:
            parts = []
            for k, v in fields.items():
                if isinstance(v, str):
                    parts.append(f'{k}="{v}"')
                elif isinstance(v, float):
                    parts.append(f"{k}={v:.3f}")
                else:
                    parts.append(f"{k}={v}")
            field_str = " | " + " ".join(parts)

        return (
            f"{ts} | {level:<{self.LEVEL_WIDTH}} | "
            f"{component:<{self.COMPONENT_WIDTH}} | {message}{field_str}"
        )


# =============================================================================
# TRAITGUARD LOGGER
# =============================================================================


class TraitguardLogger:
    """
    Production logger for Traitguard.

    Writes to <log_dir>/traitguard.log with 10 MB rotation and
    component-tagged entries for filtering.
    """

    def __init__(self, log_dir: Path | None = None):
        self._log_dir = Path(log_dir) if log_dir else LOG_DIR
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_file = self._log_dir / LOG_FILE_NAME

        self._logger = logging.getLogger("traitguard.live")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        # Remove existing handlers to avoid duplicates
        for handler in list(self._logger.handlers):
            handler.close()
        self._logger.handlers.clear()

        file_handler = logging.handlers.RotatingFileHandler(
            str(self._log_file),
            maxBytes=MAX_LOG_FILE_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(TraitguardLogFormatter())
        self._logger.addHandler(file_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(TraitguardLogFormatter())
        self._logger.addHandler(stderr_handler)

        self._session_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        self._request_count = 0

        self.info("System", "Logger initialized", log_file=str(self._log_file))

    def _log(self, level: int, tg_level: str, component: str, message: str, **fields):
        """Core log method."""
        fields["session"] = self._session_id
        record = self._logger.makeRecord(
            name="traitguard.live",
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )
        record.component = component
        record.tg_level = tg_level
        record.fields = fields
        self._logger.handle(record)

    # =========================================================================
    # PUBLIC API -- Standard levels
    # =========================================================================

    def info(self, component: str, message: str, **fields):
        self._log(logging.INFO, "INFO", component, message, **fields)

    def warn(self, component: str, message: str, **fields):
        self._log(logging.WARNING, "WARN", component, message, **fields)

    def error(self, component: str, message: str, **fields):
        self._log(logging.ERROR, "ERROR", component, message, **fields)

    # =========================================================================
    # PUBLIC API -- Domain-specific log methods
    # =========================================================================

    def llm(
        self,
        component: str,
        model: str = "",
        attempt: int = 1,
        latency_ms: int = 0,
        success: bool = True,
        **fields,
    ):
        """Log one generator call."""
        fields.update(model=model, attempt=attempt, latency_ms=latency_ms, success=success)
        level = "LLM" if success else "LLM-ERR"
        self._log(logging.INFO if success else logging.ERROR, level, component, "LLM call", **fields)

    def validation(
        self,
        subject_id: str,
        is_valid: bool,
        attempts: int = 1,
        blocked: int = 0,
        timed_out: bool = False,
        elapsed_ms: int = 0,
        **fields,
    ):
        """Log the outcome of one correction loop run."""
        fields.update(
            subject=subject_id,
            valid=is_valid,
            attempts=attempts,
            blocked=blocked,
            timed_out=timed_out,
            elapsed_ms=elapsed_ms,
        )
        level = logging.INFO if is_valid else logging.WARNING
        self._log(level, "VALID", "Validation", "Validation complete", **fields)

    def blocked(
        self,
        subject_id: str,
        field_path: str,
        reason: str = "",
        confidence: float = 0.0,
        **fields,
    ):
        """Log one blocked field change."""
        fields.update(subject=subject_id, reason=reason, confidence=confidence)
        self._log(logging.INFO, "BLOCK", "Validation", f"Blocked {field_path}", **fields)

    def server_start(self, host: str = "", port: int = 0, **fields):
        fields.update(host=host, port=port)
        self._log(logging.INFO, "BOOT", "Server", "API server started", **fields)

    def server_stop(self, **fields):
        fields.update(requests_served=self._request_count)
        self._log(logging.INFO, "HALT", "Server", "API server stopped", **fields)

    def http_request(
        self, method: str, path: str, status: int = 200, latency_ms: int = 0, **fields
    ):
        """Log an HTTP request."""
        fields.update(method=method, path=path, status=status, latency_ms=latency_ms)
        level = logging.INFO if status < 400 else logging.WARNING
        self._log(level, "HTTP", "Server", f"{method} {path} -> {status}", **fields)
        self._request_count += 1

    # =========================================================================
    # UTILITY
    # =========================================================================

    @property
    def log_file(self) -> str:
        return str(self._log_file)

    def get_log_stats(self) -> dict[str, Any]:
        """Statistics about the log folder."""
        log_files = [f for f in self._log_dir.iterdir() if f.is_file()]
        total_size = sum(f.stat().st_size for f in log_files)
        return {
            "log_file": str(self._log_file),
            "file_count": len(log_files),
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "session_id": self._session_id,
            "requests_logged": self._request_count,
        }


# =============================================================================
# SINGLETON
# =============================================================================

_logger_instance: TraitguardLogger | None = None


def get_logger(log_dir: Path | None = None) -> TraitguardLogger:
    """Get or create the global TraitguardLogger singleton."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = TraitguardLogger(log_dir=log_dir)
    return _logger_instance
