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
Traitguard -- Protection Rules (v1.2.0)

A protection rule says how hard it is to change the fields matching a glob
pattern. The highest-priority active rule that matches a field path wins.

LEVELS:
    immutable  -- never changes after creation
    protected  -- changes need confidence and, optionally, explicit wording,
                  character agency and a cooldown since the last change
    mutable    -- changes need only the minimum confidence

Rules ship as YAML. Copy DEFAULT_RULES_YAML to ~/.traitguard/rules.yaml and
point TRAITGUARD_RULES_PATH at it to customize.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from traitguard.errors import RuleValidationError

logger = logging.getLogger("traitguard.store.rules")


class ProtectionLevel(str, Enum):
    IMMUTABLE = "immutable"
    PROTECTED = "protected"
    MUTABLE = "mutable"


_VALID_LEVELS = {level.value for level in ProtectionLevel}


@dataclass
class ProtectionRule:
    """How strictly one family of field paths is guarded."""

    rule_id: str
    field_pattern: str
    protection_level: str = ProtectionLevel.PROTECTED.value
    min_confidence: float = 0.6
    require_explicit_mention: bool = False
    require_character_agency: bool = False
    cooldown_seconds: int = 0
    priority: int = 0
    is_active: bool = True

    def __post_init__(self):
        errors = []
        if not self.rule_id:
            errors.append("rule_id is required")
        if not self.field_pattern:
            errors.append("field_pattern is required")
        if self.protection_level not in _VALID_LEVELS:
            errors.append(
                f"protection_level must be one of {sorted(_VALID_LEVELS)}, "
                f"got '{self.protection_level}'"
            )
        if not 0.0 <= self.min_confidence <= 1.0:
            errors.append(f"min_confidence must be between 0 and 1, got {self.min_confidence}")
        if self.cooldown_seconds < 0:
            errors.append(f"cooldown_seconds must be >= 0, got {self.cooldown_seconds}")
        if errors:
            raise RuleValidationError(self.rule_id or "<unnamed>", errors)

    def matches(self, field_path: str) -> bool:
        return fnmatch.fnmatchcase(field_path, self.field_pattern)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProtectionRule:
        rule_id = str(data.get("rule_id") or data.get("id") or "")
        try:
            fields = dict(
                rule_id=rule_id,
                field_pattern=str(data.get("field_pattern", "")),
                protection_level=str(data.get("protection_level", ProtectionLevel.PROTECTED.value)),
                min_confidence=float(data.get("min_confidence", 0.6)),
                require_explicit_mention=bool(data.get("require_explicit_mention", False)),
                require_character_agency=bool(data.get("require_character_agency", False)),
                cooldown_seconds=int(data.get("cooldown_seconds", 0)),
                priority=int(data.get("priority", 0)),
                is_active=bool(data.get("is_active", True)),
            )
        except (TypeError, ValueError) as e:
            raise RuleValidationError(rule_id or "<unnamed>", [str(e)]) from e
        return cls(**fields)


def parse_rules(text: str, source: str = "<string>") -> list[ProtectionRule]:
    """Parse a YAML rules document (a top-level rules: list)."""
    data = yaml.safe_load(text)
    if not data or not isinstance(data, dict) or not isinstance(data.get("rules"), list):
        raise ValueError(f"Invalid rules file: {source}")

    rules = [ProtectionRule.from_dict(entry) for entry in data["rules"] if isinstance(entry, dict)]
    seen: set[str] = set()
    for rule in rules:
        if rule.rule_id in seen:
            raise RuleValidationError(rule.rule_id, ["duplicate rule_id"])
        seen.add(rule.rule_id)
    logger.debug("Loaded %d protection rule(s) from %s", len(rules), source)
    return rules


def load_rules(path: Path | str) -> list[ProtectionRule]:
    """Load protection rules from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Rules file not found: {path}")
    return parse_rules(path.read_text(encoding="utf-8"), source=str(path))


def default_rules() -> list[ProtectionRule]:
    return parse_rules(DEFAULT_RULES_YAML, source="<default>")


def select_rule(rules: list[ProtectionRule], field_path: str) -> ProtectionRule | None:
    """Highest-priority active rule matching *field_path*; ties keep list order."""
    best: ProtectionRule | None = None
    for rule in rules:
        if not rule.is_active or not rule.matches(field_path):
            continue
        if best is None or rule.priority > best.priority:
            best = rule
    return best


DEFAULT_RULES_YAML = """# Traitguard protection rules
# Copy this file to ~/.traitguard/rules.yaml and customize.
#
# field_pattern is a glob over dotted field paths (appearance.hair.color).
# The highest-priority active rule that matches wins.

rules:
  - rule_id: eyes-immutable
    field_pattern: "appearance.eyes*"
    protection_level: immutable
    priority: 100

  - rule_id: skin-immutable
    field_pattern: "appearance.skin*"
    protection_level: immutable
    priority: 100

  - rule_id: height-immutable
    field_pattern: "appearance.height*"
    protection_level: immutable
    priority: 100

  - rule_id: hair-color-protected
    field_pattern: "appearance.hair*color"
    protection_level: protected
    min_confidence: 0.6
    require_explicit_mention: true
    cooldown_seconds: 3600
    priority: 90

  - rule_id: hair-style-mutable
    field_pattern: "appearance.hair*"
    protection_level: mutable
    min_confidence: 0.3
    priority: 50

  - rule_id: appearance-default
    field_pattern: "appearance.*"
    protection_level: protected
    min_confidence: 0.5
    priority: 10

  - rule_id: personality-protected
    field_pattern: "personality.*"
    protection_level: protected
    min_confidence: 0.7
    require_explicit_mention: true
    require_character_agency: true
    priority: 50

  - rule_id: scents-mutable
    field_pattern: "scents.*"
    protection_level: mutable
    min_confidence: 0.3
    priority: 10
"""
