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
Traitguard -- Confidence Scorer (v1.2.0)

Scores how strongly a piece of free text asserts a change to one character
attribute. Six lexical sub-scores are combined with FIXED weights.

All functions must be:
- Pure
- Deterministic (pass ``now`` to pin the clock)
- Exception free

SIGNALS:
    1. EXPLICIT MENTION     -- change verb + reference to the field
    2. ACTION BASED         -- action verbs vs static copulas
    3. TEMPORAL MARKERS     -- "now", "suddenly" vs "always", "since birth"
    4. CHARACTER AGENCY     -- first person while the character is speaking
    5. CONTEXT CONSISTENCY  -- established traits and recent churn on the path
    6. SOURCE RELIABILITY   -- dialogue / inner thought vs narration
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from traitguard.validation.types import (
    ConfidenceFactors,
    FieldUpdateRequest,
    ValidationContext,
)

# =============================================================================
# WEIGHTS (process-wide, never per call)
# =============================================================================

CONFIDENCE_WEIGHTS: MappingProxyType[str, float] = MappingProxyType(
    {
        "explicit_mention": 0.25,
        "action_based": 0.20,
        "temporal_markers": 0.15,
        "character_agency": 0.15,
        "context_consistency": 0.15,
        "source_reliability": 0.10,
    }
)

SECONDS_PER_DAY = 24 * 60 * 60

# =============================================================================
# VOCABULARY
# =============================================================================

_EXPLICIT_VERBS = (
    "dye", "cut", "style", "wear", "put on", "apply", "remove", "change",
    "trim", "grow", "straighten", "curl", "color", "paint", "pierce",
)

_ACTION_WORDS = (
    "put", "wear", "apply", "remove", "change", "adjust", "fix", "do", "make",
    "get", "take", "go", "come", "move", "turn", "look", "feel", "become",
)

_STATIC_WORDS = ("is", "are", "has", "have", "looks", "appears")

_CHANGE_MARKERS = (
    "now", "today", "currently", "just", "recently", "suddenly", "then",
    "finally", "at last", "this time", "for once", "quickly", "slowly",
)

_PERMANENT_MARKERS = (
    "always", "never", "forever", "permanently", "naturally", "born with",
    "since birth", "genetic", "inherited", "usual", "typically", "normally",
)

_POSSESSIVES = ("my", "her", "his", "their")
_FIRST_PERSON = ("i", "my", "me", "myself")
_THIRD_PERSON = ("she", "he", "her", "his", "they", "their")
_SPEECH_CUES = ('"', "“", "”", "says", "tells")
_QUOTES = ('"', "“", "”")


def _words_pattern(words: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


def _gerund(verb: str) -> str:
    if verb.endswith("e") and not verb.endswith("ee"):
        return verb[:-1] + "ing"
    return verb + "ing"


# Leading word boundary only, so "dye" also matches "dyes" and "dyed"
_EXPLICIT_VERB_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(v) for v in _EXPLICIT_VERBS) + r")", re.IGNORECASE
)
_PRESENT_ACTION_RE = re.compile(
    r"\b(?:" + "|".join(rf"{re.escape(a)}s?" for a in _ACTION_WORDS) + r")\b", re.IGNORECASE
)
_GERUND_ACTION_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(_gerund(a)) for a in _ACTION_WORDS) + r")\b", re.IGNORECASE
)
_PAST_ACTION_RE = re.compile(
    r"\b(?:" + "|".join(rf"{re.escape(a)}(?:ed|d)" for a in _ACTION_WORDS) + r")\b",
    re.IGNORECASE,
)
_STATIC_RE = _words_pattern(_STATIC_WORDS)
_CHANGE_RE = _words_pattern(_CHANGE_MARKERS)
_PERMANENT_RE = _words_pattern(_PERMANENT_MARKERS)
_FIRST_PERSON_RE = _words_pattern(_FIRST_PERSON)
_THIRD_PERSON_RE = _words_pattern(_THIRD_PERSON)


# =============================================================================
# HELPERS
# =============================================================================


def canonical_value(value: Any) -> str:
    """Stable textual form used for value equality."""
    try:
        return json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(value)


def field_references(field_path: str) -> list[str]:
    """Words that count as "mentioning" a field path.

    ``appearance.hair_color`` -> ["appearance", "hair_color", "hair", "color"]
    """
    refs: list[str] = []
    for segment in field_path.lower().split("."):
        if not segment:
            continue
        refs.append(segment)
        parts = [p for p in segment.split("_") if len(p) >= 3]
        if len(parts) > 1:
            refs.extend(parts)
    # dedupe, keep order
    return list(dict.fromkeys(refs))


def _to_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _age_seconds(moment: datetime, now: datetime) -> float:
    return (now - _to_utc(moment)).total_seconds()


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# =============================================================================
# SCORER
# =============================================================================


class ConfidenceScorer:
    """
    Heuristic confidence that a text genuinely asserts a field change.

    Usage:
        confidence, factors = ConfidenceScorer.score(request, context)
    """

    @classmethod
    def score(
        cls,
        request: FieldUpdateRequest,
        context: ValidationContext,
        now: datetime | None = None,
    ) -> tuple[float, ConfidenceFactors]:
        """Return (confidence, factors) for one field update request."""
        now = _to_utc(now) if now else datetime.now(timezone.utc)
        text = request.source_text or ""

        factors = ConfidenceFactors(
            explicit_mention=_clamp(cls.explicit_mention(text, request.field_path)),
            action_based=_clamp(cls.action_based(text)),
            temporal_markers=_clamp(cls.temporal_markers(text)),
            character_agency=_clamp(cls.character_agency(text, context.message_context)),
            context_consistency=_clamp(cls.context_consistency(request, context, now)),
            source_reliability=_clamp(cls.source_reliability(text, context.message_context)),
        )
        return cls.combine(factors), factors

    @staticmethod
    def combine(factors: ConfidenceFactors) -> float:
        """Fixed-weight convex combination of the six factors, clamped."""
        values = factors.to_dict()
        total = sum(values[name] * weight for name, weight in CONFIDENCE_WEIGHTS.items())
        return _clamp(total)

    # =========================================================================
    # SUB-SCORES
    # =========================================================================

    @staticmethod
    def explicit_mention(text: str, field_path: str) -> float:
        lower = text.lower()
        refs = field_references(field_path)
        category = refs[0] if refs else ""

        has_verb = bool(_EXPLICIT_VERB_RE.search(lower))
        has_reference = any(ref in lower for ref in refs)

        if has_verb and has_reference:
            return 0.9
        if has_verb:
            return 0.7
        if has_reference:
            return 0.5

        if category and any(f"{p} {category}" in lower for p in _POSSESSIVES):
            return 0.3
        return 0.1

    @staticmethod
    def action_based(text: str) -> float:
        if _PRESENT_ACTION_RE.search(text) or _GERUND_ACTION_RE.search(text):
            return 0.8
        if _PAST_ACTION_RE.search(text):
            return 0.6
        if _STATIC_RE.search(text):
            return 0.2
        return 0.4

    @staticmethod
    def temporal_markers(text: str) -> float:
        # Permanence wins whenever it is present
        if _PERMANENT_RE.search(text):
            return 0.1
        if _CHANGE_RE.search(text):
            return 0.8
        return 0.5

    @staticmethod
    def character_agency(text: str, message_context: str | None) -> float:
        context = message_context or ""
        has_first = bool(_FIRST_PERSON_RE.search(text))
        has_third = bool(_THIRD_PERSON_RE.search(text))
        is_speaking = any(cue in context for cue in _SPEECH_CUES)

        if has_first and is_speaking:
            return 0.9
        if has_first:
            return 0.7
        if has_third and not is_speaking:
            return 0.3
        return 0.5

    @staticmethod
    def context_consistency(
        request: FieldUpdateRequest,
        context: ValidationContext,
        now: datetime,
    ) -> float:
        established = context.established_traits.get(request.field_path)
        if established is not None:
            # Reinforcing the locked-in value is never penalized
            if canonical_value(request.new_value) == canonical_value(established.value):
                return 0.9
            age = _age_seconds(established.established_at, now)
            if age < SECONDS_PER_DAY:
                return 0.2
            if age < 7 * SECONDS_PER_DAY:
                return 0.4

        recent_count = sum(
            1
            for change in context.recent_changes
            if change.field_path == request.field_path
            and _age_seconds(change.changed_at, now) < SECONDS_PER_DAY
        )
        if recent_count > 0:
            return max(0.1, 0.8 - 0.2 * recent_count)
        return 0.7

    @staticmethod
    def source_reliability(text: str, message_context: str | None) -> float:
        context = message_context or ""
        text_quoted = any(q in text for q in _QUOTES)
        text_starred = "*" in text

        if text_quoted and any(q in context for q in _QUOTES):
            return 0.8
        if text_starred and "*" in context:
            return 0.7
        if not text_quoted and not text_starred:
            return 0.5
        # markers in the candidate text that the surrounding message lacks
        return 0.6
