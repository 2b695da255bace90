"""Pytest configuration and shared fakes for traitguard tests."""

import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure src/traitguard is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

# Keep the live log out of the real home directory
os.environ.setdefault("TRAITGUARD_LOG_DIR", tempfile.mkdtemp(prefix="traitguard-logs-"))

from traitguard.errors import SubjectNotFoundError  # noqa: E402
from traitguard.validation.types import (  # noqa: E402
    DecisionCode,
    FieldChange,
    PolicyDecision,
)


class FakeOracle:
    """Policy oracle stub: immutable paths, a confidence floor, unknown prefixes."""

    def __init__(self, min_confidence=0.6, immutable=(), known_prefixes=("appearance", "personality", "scents")):
        self.min_confidence = min_confidence
        self.immutable = set(immutable)
        self.known_prefixes = tuple(known_prefixes)
        self.calls = []
        self.error = None

    async def decide(self, subject_id, field_path, confidence, explicit_mention, character_agency):
        self.calls.append((subject_id, field_path, confidence, explicit_mention, character_agency))
        if self.error is not None:
            raise self.error
        if not field_path.startswith(self.known_prefixes):
            return PolicyDecision.no_rule()
        if field_path in self.immutable:
            return PolicyDecision(False, "Field is immutable", rule_id="immutable")
        if confidence < self.min_confidence:
            return PolicyDecision(
                False,
                f"Confidence score too low ({confidence:.2f} < {self.min_confidence:.2f})",
                rule_id="floor",
            )
        return PolicyDecision(True, "Change permitted", rule_id="floor", code=DecisionCode.ALLOWED)


class FakeHistory:
    """In-memory change history and subject state."""

    def __init__(self, states=None):
        self.states = dict(states or {})
        self.changes = {}
        self.appended = []

    async def append(self, subject_id, field_path, previous_value, new_value, confidence,
                     source_text, source, message_id=None):
        change_id = f"chg-{len(self.appended) + 1}"
        self.appended.append(
            (subject_id, field_path, previous_value, new_value, confidence, source_text, source, message_id)
        )
        self.changes.setdefault(subject_id, []).insert(
            0,
            FieldChange(field_path, previous_value, new_value, confidence, datetime.now(timezone.utc), source),
        )
        return change_id

    async def load_recent(self, subject_id, limit):
        return self.changes.get(subject_id, [])[:limit]

    async def load_state(self, subject_id):
        if subject_id not in self.states:
            raise SubjectNotFoundError(f"Subject not found: {subject_id}")
        return self.states[subject_id]


class FakeGenerator:
    """TextGenerator stub replaying canned replies. Exceptions in the list are raised."""

    model = "fake-model"

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []
        self.reachable = True

    async def generate(self, messages, options):
        self.calls.append((messages, options))
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def ping(self):
        return self.reachable


class FakeExtractor:
    """TraitExtractor stub: {category: {path: value}} keyed on a trigger word."""

    def __init__(self, triggers):
        self.triggers = triggers
        self.calls = []

    def extract(self, text, category):
        self.calls.append((text, category))
        result = {}
        for word, updates in self.triggers.items():
            if word in text.lower():
                result.update(updates.get(category, {}))
        return result


@pytest.fixture
def fake_oracle():
    return FakeOracle()


@pytest.fixture
def fake_history():
    return FakeHistory(
        {
            "char-1": {
                "appearance": {"hair": {"color": "brown"}, "eyes": {"color": "green"}},
                "personality": {"traits": {"traits": ["shy"]}},
                "updated_at": "2025-01-01T00:00:00+00:00",
            }
        }
    )
