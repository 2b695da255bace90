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
Traitguard -- Update Extraction (v1.2.0)

Turns raw generator output into candidate FieldUpdateRequests.

The adapter calls the extractor once per FieldCategory and flattens whatever
comes back into one request per leaf path. A failing category is logged and
skipped; the other categories still run.

KeyValueTraitExtractor is the bundled lexical extractor. It understands:
    "hair: blonde, long; eyes: green"      (key/value segments)
    "blonde, long (hair)"                  (parenthetical hints)
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any

from traitguard.validation.interfaces import TraitExtractor
from traitguard.validation.types import FieldUpdateRequest

logger = logging.getLogger("traitguard.validation.extraction")


class FieldCategory(str, Enum):
    """Closed set of character sections that carry protected traits."""

    APPEARANCE = "appearance"
    PERSONALITY = "personality"
    SCENTS = "scents"


# Leaves nested deeper than this are ignored
_MAX_FLATTEN_DEPTH = 4


def flatten_updates(
    data: dict[str, Any], prefix: str, depth: int = 0
) -> list[tuple[str, Any]]:
    """Flatten nested extractor output into (path, leaf_value) pairs."""
    pairs: list[tuple[str, Any]] = []
    if depth >= _MAX_FLATTEN_DEPTH:
        return pairs
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            if value:
                pairs.extend(flatten_updates(value, path, depth + 1))
        else:
            pairs.append((path, value))
    return pairs


class UpdateExtractionAdapter:
    """
    Extract candidate field updates from one response.

    Usage:
        adapter = UpdateExtractionAdapter(KeyValueTraitExtractor())
        requests = adapter.extract("*She dyes her hair* hair: blonde")
    """

    def __init__(self, extractor: TraitExtractor):
        self.extractor = extractor

    def extract(self, response_text: str, message_id: str | None = None) -> list[FieldUpdateRequest]:
        if not response_text or not response_text.strip():
            return []

        updates: list[FieldUpdateRequest] = []
        for category in FieldCategory:
            try:
                parsed = self.extractor.extract(response_text, category.value)
            except Exception as e:
                logger.warning("Extraction failed for %s: %s", category.value, e)
                continue

            if not parsed:
                continue

            for path, value in flatten_updates(parsed, ""):
                if not path.startswith(f"{category.value}."):
                    path = f"{category.value}.{path}"
                updates.append(
                    FieldUpdateRequest(
                        field_path=path,
                        new_value=value,
                        source_text=response_text,
                        extractor_output=parsed,
                        message_id=message_id,
                    )
                )

        logger.debug("Extracted %d candidate update(s)", len(updates))
        return updates


# =============================================================================
# BUNDLED LEXICAL EXTRACTOR
# =============================================================================

_KEY_RE = re.compile(r"\b([a-z][a-z ]*[a-z])\s*:", re.IGNORECASE)
_PAREN_RE = re.compile(r"([^()\n]+?)\s*\(([^)]+)\)")

_SINGULAR_TO_PLURAL = {
    "foot": "feet",
    "hand": "hands",
    "eye": "eyes",
    "arm": "arms",
    "leg": "legs",
    "toe": "toes",
    "finger": "fingers",
}

_CATEGORY_KEYS: dict[str, frozenset[str]] = {
    FieldCategory.APPEARANCE.value: frozenset(
        {
            "hair", "eyes", "skin", "height", "build", "weight", "face", "lips",
            "nose", "clothing", "clothes", "outfit", "body", "hands", "feet",
            "legs", "arms", "fingers", "toes", "makeup", "nails", "tattoos",
            "piercings", "accessories", "features",
        }
    ),
    FieldCategory.PERSONALITY.value: frozenset(
        {
            "personality", "traits", "temperament", "mood", "demeanor", "attitude",
            "strengths", "weaknesses", "fears", "desires", "habits", "quirks",
            "values", "behavior",
        }
    ),
    FieldCategory.SCENTS.value: frozenset(
        {"scent", "scents", "smell", "aroma", "fragrance", "perfume", "cologne", "soap", "natural"}
    ),
}

_COLOR_WORDS = frozenset(
    {
        "black", "brown", "blonde", "blond", "red", "auburn", "ginger", "gray", "grey",
        "white", "silver", "blue", "green", "hazel", "amber", "pink", "purple", "violet",
        "golden", "platinum", "pale", "tan", "dark", "light", "olive",
    }
)
_LENGTH_WORDS = frozenset({"long", "short", "shoulder length", "cropped", "buzzed", "tall"})
_STYLE_WORDS = frozenset(
    {"curly", "straight", "wavy", "braided", "ponytail", "bun", "messy", "sleek", "spiky", "bob"}
)
_SCENT_DESCRIPTOR_RE = re.compile(r"\b(scent|smell|aroma|fragrance|odor|perfume)\b", re.IGNORECASE)


def normalize_key(raw: str) -> str:
    """Lowercase, drop articles, keep alphanumerics, underscores for spaces."""
    key = raw.strip().lower()
    key = re.sub(r"^(the|a|an)\s+", "", key)
    key = re.sub(r"[^a-z0-9\s]", "", key)
    key = re.sub(r"\s+", "_", key).strip("_")
    key = re.sub(r"_(size|style|color|colour)$", "", key)
    return _SINGULAR_TO_PLURAL.get(key, key)


def parse_values(raw: str) -> list[str]:
    values = []
    for part in re.split(r"[,;]", raw):
        value = _SCENT_DESCRIPTOR_RE.sub("", part).strip().strip(".!?*\"'").strip()
        if value:
            values.append(value.lower())
    return values


def infer_subtype(category: str, values: list[str]) -> str:
    if category == FieldCategory.SCENTS.value:
        return "aroma"
    if category == FieldCategory.PERSONALITY.value:
        return "traits"
    joined = " ".join(values)
    words = set(joined.split())
    if words & _COLOR_WORDS:
        return "color"
    if words & _STYLE_WORDS:
        return "style"
    if any(w in joined for w in _LENGTH_WORDS):
        return "length"
    return "description"


def _resolve_key(key: str, vocabulary: frozenset[str]) -> str | None:
    """Match a normalized key against a category vocabulary.

    "she_has_hair" resolves to "hair": the rightmost known word wins.
    """
    if key in vocabulary:
        return key
    for part in reversed(key.split("_")):
        part = _SINGULAR_TO_PLURAL.get(part, part)
        if part in vocabulary:
            return part
    return None


class KeyValueTraitExtractor:
    """Lexical extractor for "key: values" and "values (key)" patterns.

    Returns category-relative paths, e.g. ``{"hair.color": ["blonde"]}`` for
    category ``appearance``.
    """

    def extract(self, text: str, category: str) -> dict[str, Any]:
        if category not in _CATEGORY_KEYS:
            raise ValueError(f"Unknown field category: {category}")
        if not text or not text.strip():
            return {}

        vocabulary = _CATEGORY_KEYS[category]
        result: dict[str, Any] = {}
        for raw_key, values in self._pairs(text):
            key = _resolve_key(raw_key, vocabulary)
            if key is None or not values:
                continue
            result[f"{key}.{infer_subtype(category, values)}"] = values
        return result

    @staticmethod
    def _pairs(text: str) -> list[tuple[str, list[str]]]:
        pairs: list[tuple[str, list[str]]] = []

        # Strategy 1: key/value segments, value runs to the next key or line end
        for line in text.splitlines():
            matches = list(_KEY_RE.finditer(line))
            for i, match in enumerate(matches):
                end = matches[i + 1].start() if i + 1 < len(matches) else len(line)
                value_text = line[match.end():end].strip(" ,;")
                pairs.append((normalize_key(match.group(1)), parse_values(value_text)))
        if pairs:
            return pairs

        # Strategy 2: parenthetical hints
        for match in _PAREN_RE.finditer(text):
            value_text = match.group(1).split(".")[-1]
            pairs.append((normalize_key(match.group(2)), parse_values(value_text)))
        return pairs
