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
Traitguard -- Validation Data Model (v1.2.0)

Types shared by the scorer, the protection evaluator, the correction loop
and the generation service.

LIFECYCLE:
    ValidationContext   -- rebuilt per request, read-only inside one loop
    FieldChange         -- durable, owned by the change-history store
    everything else     -- transient, scoped to one generate/validate/correct cycle
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Most recent history records loaded into a context
RECENT_CHANGE_LIMIT = 50


class TraitSource(str, Enum):
    """Where an established trait value came from."""

    MANUAL = "manual"
    EXTRACTED = "extracted"
    DEFAULT = "default"


class DecisionCode(str, Enum):
    """Outcome class of a policy-oracle decision."""

    ALLOWED = "allowed"
    DENIED = "denied"
    NO_RULE = "no_rule"


# =============================================================================
# CONTEXT
# =============================================================================


@dataclass
class EstablishedTrait:
    """The locked-in value for a field path and when it was locked in."""

    value: Any
    confidence: float = 0.8
    established_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: TraitSource = TraitSource.MANUAL


@dataclass
class FieldChange:
    """One append-only history record."""

    field_path: str
    previous_value: Any
    new_value: Any
    confidence: float
    changed_at: datetime
    source: str = "extracted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_path": self.field_path,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "confidence": round(self.confidence, 4),
            "changed_at": self.changed_at.isoformat(),
            "source": self.source,
        }


@dataclass
class ConversationMessage:
    """A single prior turn, kept on the context for diagnostics."""

    content: str
    speaker: str  # "user" or "character"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ValidationContext:
    """Everything the scorer and evaluator know about one subject."""

    subject_id: str
    current_state: dict[str, Any] = field(default_factory=dict)
    recent_changes: list[FieldChange] = field(default_factory=list)
    established_traits: dict[str, EstablishedTrait] = field(default_factory=dict)
    message_context: str | None = None
    history: list[ConversationMessage] = field(default_factory=list)

    def with_message_context(self, text: str) -> ValidationContext:
        """Return a shallow copy whose message_context is *text*."""
        return replace(self, message_context=text)


# =============================================================================
# REQUESTS AND SCORES
# =============================================================================


@dataclass
class FieldUpdateRequest:
    """One candidate change found in one generator response."""

    field_path: str
    new_value: Any
    source_text: str
    extractor_output: dict[str, Any] = field(default_factory=dict)
    message_id: str | None = None

    @property
    def category(self) -> str:
        return self.field_path.split(".")[0]

    @property
    def attribute(self) -> str:
        parts = self.field_path.split(".")
        return parts[1] if len(parts) > 1 else ""


@dataclass
class ConfidenceFactors:
    """Six independent sub-scores, each in [0, 1]."""

    explicit_mention: float  # "I dye my hair" vs "blonde hair"
    action_based: float  # "puts on" vs "has"
    temporal_markers: float  # "now", "suddenly" vs "always"
    character_agency: float  # character vs external description
    context_consistency: float  # agrees with established state
    source_reliability: float  # dialogue vs narration

    @classmethod
    def zero(cls) -> ConfidenceFactors:
        return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    def to_dict(self) -> dict[str, float]:
        return {
            "explicit_mention": self.explicit_mention,
            "action_based": self.action_based,
            "temporal_markers": self.temporal_markers,
            "character_agency": self.character_agency,
            "context_consistency": self.context_consistency,
            "source_reliability": self.source_reliability,
        }


@dataclass
class PolicyDecision:
    """Answer from the policy oracle for one field change."""

    allowed: bool
    reason: str
    rule_id: str | None = None
    code: DecisionCode = DecisionCode.DENIED

    @classmethod
    def no_rule(cls) -> PolicyDecision:
        return cls(
            allowed=False,
            reason="No protection rule found",
            rule_id=None,
            code=DecisionCode.NO_RULE,
        )


@dataclass
class ValidationResult:
    """Verdict on a single FieldUpdateRequest."""

    allowed: bool
    confidence: float
    reason: str
    factors: ConfidenceFactors
    rule_id: str | None = None
    suggested_correction: str | None = None
    code: DecisionCode = DecisionCode.DENIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "confidence": round(self.confidence, 4),
            "reason": self.reason,
            "rule_id": self.rule_id,
            "factors": self.factors.to_dict(),
            "suggested_correction": self.suggested_correction,
            "code": self.code.value,
        }


# =============================================================================
# LOOP OUTPUT
# =============================================================================


@dataclass
class BlockedUpdate:
    """Caller-facing projection of a rejected FieldUpdateRequest."""

    field_path: str
    attempted_value: Any
    reason: str
    confidence: float
    suggested_correction: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_path": self.field_path,
            "attempted_value": self.attempted_value,
            "reason": self.reason,
            "confidence": round(self.confidence, 4),
            "suggested_correction": self.suggested_correction,
        }


@dataclass
class CorrectionOptions:
    """Knobs for one correction loop run."""

    max_retries: int = 2
    timeout_ms: int = 10000
    bypass: bool = False
    log_blocked: bool = True


@dataclass
class CorrectionLoopResult:
    """Outcome of one generate/validate/correct cycle."""

    is_valid: bool
    final_text: str
    blocked_updates: list[BlockedUpdate] = field(default_factory=list)
    attempt_count: int = 1
    timed_out: bool = False
    elapsed_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "final_text": self.final_text,
            "blocked_updates": [b.to_dict() for b in self.blocked_updates],
            "attempt_count": self.attempt_count,
            "timed_out": self.timed_out,
            "elapsed_ms": self.elapsed_ms,
        }
