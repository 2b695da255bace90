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
Traitguard -- Settings (v1.2.0)

Resolution order (highest wins):
    1. TRAITGUARD_* environment variables
    2. ~/.traitguard/settings.json
    3. Hardcoded defaults

A missing or malformed settings file is never fatal: it is logged and the
defaults stand.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger("traitguard.core.config")

# Default paths
TRAITGUARD_DIR = Path.home() / ".traitguard"
_SETTINGS_FILE = TRAITGUARD_DIR / "settings.json"
_ENV_PREFIX = "TRAITGUARD_"


@dataclass
class TraitguardSettings:
    """Resolved runtime settings."""

    ollama_base_url: str = "http://localhost:11434"
    model: str = "llama3.1"
    request_timeout: float = 60.0
    temperature: float = 0.7
    retry_temperature: float = 0.6
    max_retries: int = 2
    validation_timeout_ms: int = 8000
    db_path: str = str(TRAITGUARD_DIR / "traitguard.db")
    rules_path: str | None = None
    recent_change_limit: int = 50

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_settings(
    settings_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> TraitguardSettings:
    """Load and resolve settings.

    Args:
        settings_path: Override path to settings.json.
        environ: Override environment mapping (defaults to os.environ).

    Returns:
        Resolved TraitguardSettings.
    """
    path = settings_path or _SETTINGS_FILE
    env = os.environ if environ is None else environ

    result = TraitguardSettings()

    # Layer 1: settings file
    file_settings = _load_json(path)
    for f in fields(result):
        if f.name in file_settings:
            _apply(result, f.name, file_settings[f.name], source=str(path))

    # Layer 2: environment (override)
    for f in fields(result):
        env_key = _ENV_PREFIX + f.name.upper()
        if env_key in env:
            _apply(result, f.name, env[env_key], source=env_key)

    logger.debug(
        "Settings: model=%s, base_url=%s, max_retries=%d, timeout_ms=%d",
        result.model,
        result.ollama_base_url,
        result.max_retries,
        result.validation_timeout_ms,
    )
    return result


def _apply(settings: TraitguardSettings, name: str, raw: Any, source: str) -> None:
    """Coerce *raw* to the type of the default and set it. Bad values are skipped."""
    current = getattr(settings, name)
    try:
        if name == "rules_path":
            value = str(raw) if raw else None
        elif isinstance(current, bool):
            value = raw if isinstance(raw, bool) else str(raw).lower() in ("1", "true", "yes")
        elif isinstance(current, int):
            value = int(raw)
        elif isinstance(current, float):
            value = float(raw)
        else:
            value = str(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid setting %s=%r from %s", name, raw, source)
        return
    setattr(settings, name, value)


def _load_json(path: Path) -> dict:
    """Load a JSON object file, returning empty dict on any error."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception as e:
        logger.warning("Ignoring malformed settings file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object", path)
        return {}
    return data
