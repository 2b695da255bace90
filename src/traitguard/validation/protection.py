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
Traitguard -- Field Protection Evaluator (v1.2.0)

Decides whether ONE proposed field change may go through.

The evaluator owns the evidence (confidence score + two booleans). The policy
oracle owns the verdict: which fields are protected at all, thresholds and
cooldown windows. Unknown fields are DENIED (fail closed).

On an internal error the single evaluation is denied with confidence 0 and
all-zero factors. How the correction loop reacts to that is its own business.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from traitguard.errors import SubjectNotFoundError
from traitguard.validation.extraction import FieldCategory
from traitguard.validation.interfaces import ChangeHistoryStore, PolicyOracle
from traitguard.validation.scorer import ConfidenceScorer
from traitguard.validation.types import (
    RECENT_CHANGE_LIMIT,
    ConfidenceFactors,
    DecisionCode,
    EstablishedTrait,
    FieldUpdateRequest,
    TraitSource,
    ValidationContext,
    ValidationResult,
)

logger = logging.getLogger("traitguard.validation.protection")

# Evidence booleans handed to the oracle
EXPLICIT_MENTION_THRESHOLD = 0.5
CHARACTER_AGENCY_THRESHOLD = 0.5

# Nested state deeper than this is not turned into established traits
_MAX_TRAIT_DEPTH = 4


def get_value_at_path(state: dict[str, Any], path: str) -> Any:
    """Walk a dotted path through nested dicts. Missing -> None."""
    current: Any = state
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def field_label(field_path: str) -> str:
    """``appearance.hair.color`` -> ``appearance.hair``; single segment kept as is."""
    parts = field_path.split(".")
    if len(parts) < 2:
        return field_path
    return f"{parts[0]}.{parts[1]}"


def suggest_correction(field_path: str, reason: str) -> str:
    """Human-readable correction for a denied change, keyed on the reason."""
    label = field_label(field_path)
    lowered = (reason or "").lower()

    if "immutable" in lowered:
        return (
            f"{label} cannot be changed. Please rewrite your response without "
            f"modifying this character trait."
        )
    if "confidence score too low" in lowered:
        return (
            f"Please be more explicit about changes to {label}. Use clear action "
            f'words like "dyes", "cuts", "wears", etc.'
        )
    if "explicit mention" in lowered:
        return f"Changes to {label} must be explicitly mentioned in the text, not just implied."
    if "character agency" in lowered:
        return (
            f"Changes to {label} must be initiated by the character themselves, "
            f"not described externally."
        )
    if "cooldown" in lowered:
        return (
            f"{label} was recently changed. Please wait before making another change "
            f"to this trait."
        )
    return f"Please modify your response to avoid changing {label}. {reason}"


class FieldProtectionEvaluator:
    """
    Allow/deny single field changes and record the accepted ones.

    Usage:
        evaluator = FieldProtectionEvaluator(oracle=store, history=store)
        context = await evaluator.build_context("char-42", message_text)
        result = await evaluator.evaluate(request, context)
        if result.allowed:
            change_id = await evaluator.record(request, context, result)
    """

    def __init__(
        self,
        oracle: PolicyOracle,
        history: ChangeHistoryStore,
        scorer: type[ConfidenceScorer] = ConfidenceScorer,
    ):
        self.oracle = oracle
        self.history = history
        self.scorer = scorer

    # =========================================================================
    # EVALUATE
    # =========================================================================

    async def evaluate(
        self, request: FieldUpdateRequest, context: ValidationContext
    ) -> ValidationResult:
        """Score the request and ask the oracle for a verdict."""
        try:
            confidence, factors = self.scorer.score(request, context)
            explicit = factors.explicit_mention > EXPLICIT_MENTION_THRESHOLD
            agency = factors.character_agency > CHARACTER_AGENCY_THRESHOLD

            decision = await self.oracle.decide(
                context.subject_id,
                request.field_path,
                confidence,
                explicit,
                agency,
            )

            if decision is None or decision.code == DecisionCode.NO_RULE:
                logger.info(
                    "No protection rule for %s (subject=%s), denying",
                    request.field_path,
                    context.subject_id,
                )
                reason = decision.reason if decision else "No protection rule found"
                return ValidationResult(
                    allowed=False,
                    confidence=confidence,
                    reason=reason,
                    factors=factors,
                    suggested_correction=suggest_correction(request.field_path, reason),
                    code=DecisionCode.NO_RULE,
                )

            if not decision.allowed:
                return ValidationResult(
                    allowed=False,
                    confidence=confidence,
                    reason=decision.reason,
                    rule_id=decision.rule_id,
                    factors=factors,
                    suggested_correction=suggest_correction(request.field_path, decision.reason),
                    code=DecisionCode.DENIED,
                )

            return ValidationResult(
                allowed=True,
                confidence=confidence,
                reason="Validation passed",
                rule_id=decision.rule_id,
                factors=factors,
                code=DecisionCode.ALLOWED,
            )

        except Exception as e:
            logger.error("Error validating field update %s: %s", request.field_path, e)
            return ValidationResult(
                allowed=False,
                confidence=0.0,
                reason=f"Validation error: {e}",
                factors=ConfidenceFactors.zero(),
            )

    async def evaluate_many(
        self, requests: list[FieldUpdateRequest], context: ValidationContext
    ) -> list[ValidationResult]:
        """Evaluate requests in order, one verdict per request."""
        return [await self.evaluate(request, context) for request in requests]

    # =========================================================================
    # RECORD
    # =========================================================================

    async def record(
        self,
        request: FieldUpdateRequest,
        context: ValidationContext,
        result: ValidationResult,
    ) -> str:
        """Append an allowed change to the history store. Returns the change id."""
        if not result.allowed:
            raise ValueError(f"Refusing to record denied change to {request.field_path}")

        previous = get_value_at_path(context.current_state, request.field_path)
        change_id = await self.history.append(
            context.subject_id,
            request.field_path,
            previous,
            request.new_value,
            result.confidence,
            request.source_text,
            TraitSource.EXTRACTED.value,
            request.message_id,
        )
        logger.info(
            "Recorded change %s: %s (subject=%s, confidence=%.3f)",
            change_id,
            request.field_path,
            context.subject_id,
            result.confidence,
        )
        return change_id

    # =========================================================================
    # CONTEXT
    # =========================================================================

    async def build_context(
        self,
        subject_id: str,
        message_context: str | None = None,
        recent_limit: int = RECENT_CHANGE_LIMIT,
    ) -> ValidationContext:
        """Load state and recent history for a subject from the store."""
        state = await self.history.load_state(subject_id)
        if state is None:
            raise SubjectNotFoundError(f"Subject not found: {subject_id}")
        recent = await self.history.load_recent(subject_id, recent_limit)

        # Traits without their own change record date from when the state was seeded
        fallback_time = _parse_timestamp(state.get("established_at") or state.get("updated_at"))
        latest_change: dict[str, datetime] = {}
        for change in recent:
            seen = latest_change.get(change.field_path)
            if seen is None or change.changed_at > seen:
                latest_change[change.field_path] = change.changed_at

        traits: dict[str, EstablishedTrait] = {}
        for category in FieldCategory:
            section = state.get(category.value)
            if isinstance(section, dict):
                _flatten_traits(section, category.value, traits, latest_change, fallback_time)

        return ValidationContext(
            subject_id=subject_id,
            current_state=state,
            recent_changes=recent,
            established_traits=traits,
            message_context=message_context,
        )


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _flatten_traits(
    obj: dict[str, Any],
    prefix: str,
    traits: dict[str, EstablishedTrait],
    latest_change: dict[str, datetime],
    fallback_time: datetime,
    depth: int = 0,
) -> None:
    if depth >= _MAX_TRAIT_DEPTH:
        return
    for key, value in obj.items():
        path = f"{prefix}.{key}"
        if isinstance(value, dict):
            _flatten_traits(value, path, traits, latest_change, fallback_time, depth + 1)
        else:
            traits[path] = EstablishedTrait(
                value=value,
                confidence=0.8,
                established_at=latest_change.get(path, fallback_time),
                source=TraitSource.MANUAL,
            )


__all__ = [
    "FieldProtectionEvaluator",
    "field_label",
    "get_value_at_path",
    "suggest_correction",
]
