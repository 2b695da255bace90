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
Traitguard -- Response Formatting Profiles (v1.2.0)

Per adventure type output rules applied to the winning response text, plus
the generation limits (max tokens, stop sequences, history window) the
service hands to the generator.

Profiles: romance, action, general. Unknown types fall back to general.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_ADVENTURE_TYPE = "general"


@dataclass(frozen=True)
class ContextWindow:
    default: int
    min: int
    max: int


@dataclass(frozen=True)
class FormatProfile:
    """Output rules for one adventure type."""

    name: str
    max_paragraphs: int
    enforce_asterisk_formatting: bool
    prevent_user_speaking: bool
    add_ending_marker: bool
    max_tokens: int
    stop_sequences: tuple[str, ...]
    context_window: ContextWindow
    action_patterns: tuple[str, ...] = ()
    user_patterns: tuple[re.Pattern[str], ...] = ()
    ending_marker: str = ""
    _action_re: re.Pattern[str] | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.action_patterns:
            words = "|".join(re.escape(w) for w in self.action_patterns)
            object.__setattr__(
                self, "_action_re", re.compile(rf"\b(?:She|He|I|They)\s+(?:{words})\b")
            )

    @property
    def action_re(self) -> re.Pattern[str] | None:
        return self._action_re


# =============================================================================
# PROFILES
# =============================================================================

_NARRATION_ABOUT_USER = re.compile(r"(\n|^)(You|User|The user)[\s\w]*?[.!?](\n|$)", re.IGNORECASE)
_QUOTED_ABOUT_USER = re.compile(r"(\n|^)[\"'].*?(you|user).*?[\"'](\n|$)", re.IGNORECASE)
_SPEAKING_FOR_USER = re.compile(
    r"(\n|^)\*?You\s+(say|said|ask|asked|respond|responded|reply|replied|did|do|will|would|can|could|might|should)",
    re.IGNORECASE,
)
_SPEAKING_FOR_USER_SHORT = re.compile(
    r"(\n|^)\*?You\s+(say|said|ask|asked|respond|responded|reply|replied)", re.IGNORECASE
)

_SHARED_ACTIONS = (
    "walked", "ran", "looked", "felt", "thought", "moved", "stepped", "turned",
    "smiled", "laughed", "sighed", "breathed", "grabbed", "scanned", "raced",
    "paused", "hesitated", "nodded", "shook", "whispered",
)

_STOP_SEQUENCES = ("[USER:", "User:", "\nUser")

FORMAT_PROFILES: dict[str, FormatProfile] = {
    "romance": FormatProfile(
        name="romance",
        max_paragraphs=2,
        enforce_asterisk_formatting=True,
        prevent_user_speaking=True,
        add_ending_marker=True,
        max_tokens=200,
        stop_sequences=_STOP_SEQUENCES + ("\n\n\n",),
        context_window=ContextWindow(default=18, min=15, max=20),
        action_patterns=_SHARED_ACTIONS
        + ("blushed", "gasped", "trembled", "shivered", "melted", "leaned", "caressed", "touched"),
        user_patterns=(
            _NARRATION_ABOUT_USER,
            _QUOTED_ABOUT_USER,
            _SPEAKING_FOR_USER,
            re.compile(
                r"(\n|^)\*?Your\s+(eyes|face|hands|voice|heart|mind|lips|skin|touch)", re.IGNORECASE
            ),
        ),
        ending_marker="*{pronoun} waits for your response.*",
    ),
    "action": FormatProfile(
        name="action",
        max_paragraphs=2,
        enforce_asterisk_formatting=True,
        prevent_user_speaking=True,
        add_ending_marker=True,
        max_tokens=200,
        stop_sequences=_STOP_SEQUENCES + ("\n\n\n",),
        context_window=ContextWindow(default=10, min=8, max=12),
        action_patterns=_SHARED_ACTIONS
        + (
            "shouted", "jumped", "ducked", "aimed", "fired", "blocked", "dodged", "struck",
            "hit", "rolled", "sprinted", "charged", "slashed", "parried", "crouched", "leaped",
        ),
        user_patterns=(
            _NARRATION_ABOUT_USER,
            _QUOTED_ABOUT_USER,
            _SPEAKING_FOR_USER,
            re.compile(
                r"(\n|^)\*?Your\s+(eyes|face|hands|voice|heart|mind|weapon|gear|equipment)",
                re.IGNORECASE,
            ),
        ),
        ending_marker="*{pronoun} waits for your next move.*",
    ),
    "general": FormatProfile(
        name="general",
        max_paragraphs=3,
        enforce_asterisk_formatting=False,
        prevent_user_speaking=True,
        add_ending_marker=False,
        max_tokens=300,
        stop_sequences=_STOP_SEQUENCES,
        context_window=ContextWindow(default=10, min=8, max=15),
        user_patterns=(_NARRATION_ABOUT_USER, _SPEAKING_FOR_USER_SHORT),
    ),
}

# Any of these means the model already handed the turn back
_ENDING_CUES = ("[END RESPONSE", "wait for", "waits for")
_EXCESS_NEWLINES = re.compile(r"\n\s*\n\s*\n+")


def get_format_profile(adventure_type: str | None) -> FormatProfile:
    return FORMAT_PROFILES.get(adventure_type or DEFAULT_ADVENTURE_TYPE, FORMAT_PROFILES["general"])


def get_stop_sequences(adventure_type: str | None, character_name: str | None = None) -> list[str]:
    """Profile stop sequences, plus ``"{character_name}:"`` when a name is given."""
    stops = list(get_format_profile(adventure_type).stop_sequences)
    if character_name:
        stops.append(f"{character_name}:")
    return stops


def get_context_window_size(adventure_type: str | None, custom_size: int | None = None) -> int:
    """History window for the type; a custom size is clamped to the profile bounds."""
    window = get_format_profile(adventure_type).context_window
    if custom_size is not None:
        return max(window.min, min(window.max, custom_size))
    return window.default


def _wrap_action(match: re.Match[str]) -> str:
    text = match.group(0)
    start = match.start()
    # Already inside an asterisk span opened right before the pronoun
    if start > 0 and match.string[start - 1] == "*":
        return text
    return f"*{text}*"


def format_response(
    text: str,
    adventure_type: str | None,
    character_name: str | None = None,
    pronoun: str | None = None,
) -> str:
    """
    Apply the adventure type's output rules to a response.

    Steps, in order: trim, cap paragraphs, asterisk-wrap character actions,
    strip narration spoken for the user, append the ending marker, collapse
    runs of blank lines. Deterministic for a given input.

    ``pronoun`` fills the ending marker ("She waits for your response.");
    defaults to "They". ``character_name`` is accepted for call-site symmetry
    with get_stop_sequences().
    """
    profile = get_format_profile(adventure_type)
    formatted = (text or "").strip()

    paragraphs = [p for p in formatted.split("\n\n") if p.strip()]
    if len(paragraphs) > profile.max_paragraphs:
        formatted = "\n\n".join(paragraphs[: profile.max_paragraphs])

    if profile.enforce_asterisk_formatting and profile.action_re is not None:
        formatted = profile.action_re.sub(_wrap_action, formatted)

    if profile.prevent_user_speaking:
        for pattern in profile.user_patterns:
            formatted = pattern.sub("", formatted)

    if profile.add_ending_marker and not any(cue in formatted for cue in _ENDING_CUES):
        marker = profile.ending_marker.format(pronoun=pronoun or "They")
        formatted += f"\n\n{marker}"

    formatted = _EXCESS_NEWLINES.sub("\n\n", formatted)
    return formatted.rstrip().strip()
