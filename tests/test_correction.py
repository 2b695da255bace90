# Traitguard
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Traitguard.
#
# Traitguard is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Tests for the bounded generate -> validate -> correct loop."""

import pytest

from conftest import FakeExtractor, FakeHistory, FakeOracle
from traitguard.errors import GenerationError
from traitguard.validation.correction import (
    DEFAULT_SUGGESTION,
    ResponseCorrectionOrchestrator,
    build_correction_prompt,
)
from traitguard.validation.extraction import KeyValueTraitExtractor, UpdateExtractionAdapter
from traitguard.validation.protection import FieldProtectionEvaluator
from traitguard.validation.types import BlockedUpdate, CorrectionOptions, ValidationContext

# "blonde" anywhere in a response proposes a hair color change
BLONDE = {"blonde": {"appearance": {"hair": {"color": "blonde"}}}}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Regenerator:
    """Records every correction request and replays canned texts."""

    def __init__(self, replies, clock=None, advance=0.0):
        self.replies = list(replies)
        self.calls = []
        self.clock = clock
        self.advance = advance

    async def __call__(self, prompt, attempt):
        self.calls.append((prompt, attempt))
        if self.clock is not None:
            self.clock.now += self.advance
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _orchestrator(oracle=None, clock=None, extractor=None):
    oracle = oracle or FakeOracle(immutable={"appearance.hair.color"})
    evaluator = FieldProtectionEvaluator(oracle, FakeHistory())
    extraction = UpdateExtractionAdapter(extractor or FakeExtractor(BLONDE))
    if clock is None:
        return ResponseCorrectionOrchestrator(extraction, evaluator)
    return ResponseCorrectionOrchestrator(extraction, evaluator, clock=clock)


@pytest.fixture
def context():
    return ValidationContext(subject_id="char-1")


# =========================================================================
# CORRECTION PROMPT
# =========================================================================


class TestCorrectionPrompt:
    def _blocked(self, suggestion="Keep her hair brown."):
        return BlockedUpdate("appearance.hair.color", "blonde", "Field is immutable", 0.4, suggestion)

    def test_bullet_is_verbatim(self):
        prompt = build_correction_prompt([self._blocked()], attempt=1)
        assert "- appearance.hair: Keep her hair brown." in prompt.splitlines()

    def test_first_attempt_has_no_urgency(self):
        prompt = build_correction_prompt([self._blocked()], attempt=1)
        assert prompt.startswith("Your previous response attempted to modify protected")

    def test_later_attempts_are_critical(self):
        assert build_correction_prompt([self._blocked()], attempt=2).startswith("CRITICAL: ")

    def test_closing_reminders(self):
        prompt = build_correction_prompt([self._blocked()], attempt=1)
        assert "Remember:" in prompt
        assert "Keep all dialogue and character interactions intact" in prompt


# =========================================================================
# LOOP
# =========================================================================


class TestLoop:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, context):
        orchestrator = _orchestrator()
        regenerate = Regenerator([])

        result = await orchestrator.run("Her brown hair shines.", context, regenerate)

        assert result.is_valid is True
        assert result.final_text == "Her brown hair shines."
        assert result.attempt_count == 1
        assert result.blocked_updates == []
        assert regenerate.calls == []

    @pytest.mark.asyncio
    async def test_bypass_short_circuits(self, context):
        extractor = FakeExtractor(BLONDE)
        orchestrator = _orchestrator(extractor=extractor)
        regenerate = Regenerator([])

        result = await orchestrator.run(
            "She is blonde now.", context, regenerate, CorrectionOptions(bypass=True)
        )

        assert result.is_valid is True
        assert result.attempt_count == 1
        assert result.blocked_updates == []
        assert extractor.calls == []
        assert regenerate.calls == []

    @pytest.mark.asyncio
    async def test_correction_succeeds_on_retry(self, context):
        orchestrator = _orchestrator()
        regenerate = Regenerator(["Her brown hair shines."])

        result = await orchestrator.run("She is blonde now.", context, regenerate)

        assert result.is_valid is True
        assert result.final_text == "Her brown hair shines."
        assert result.attempt_count == 2
        assert [b.field_path for b in result.blocked_updates] == ["appearance.hair.color"]
        prompt, attempt = regenerate.calls[0]
        assert attempt == 1
        assert "- appearance.hair: appearance.hair cannot be changed." in prompt

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self, context):
        orchestrator = _orchestrator()
        regenerate = Regenerator(["still blonde", "blonde forever", "never used"])

        result = await orchestrator.run(
            "She is blonde now.", context, regenerate, CorrectionOptions(max_retries=2)
        )

        assert result.is_valid is False
        assert result.attempt_count == 3
        assert len(regenerate.calls) == 2
        assert result.final_text == "blonde forever"
        assert len(result.blocked_updates) == 3
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_zero_retries_never_regenerates(self, context):
        orchestrator = _orchestrator()
        regenerate = Regenerator([])

        result = await orchestrator.run(
            "She is blonde now.", context, regenerate, CorrectionOptions(max_retries=0)
        )

        assert result.is_valid is False
        assert result.attempt_count == 1
        assert result.final_text == "She is blonde now."
        assert regenerate.calls == []

    @pytest.mark.asyncio
    async def test_prompt_lists_only_current_attempt(self, context):
        extractor = FakeExtractor(
            {
                "blonde": {"appearance": {"hair": {"color": "blonde"}}},
                "red eyes": {"appearance": {"eyes": {"color": "red"}}},
            }
        )
        oracle = FakeOracle(immutable={"appearance.hair.color", "appearance.eyes.color"})
        orchestrator = _orchestrator(oracle=oracle, extractor=extractor)
        regenerate = Regenerator(["red eyes", "calm"])

        await orchestrator.run("blonde", context, regenerate)

        second_prompt, second_attempt = regenerate.calls[1]
        assert second_attempt == 2
        assert second_prompt.startswith("CRITICAL: ")
        assert "- appearance.eyes:" in second_prompt
        assert "- appearance.hair:" not in second_prompt

    @pytest.mark.asyncio
    async def test_timeout_keeps_latest_text(self, context):
        clock = FakeClock()
        orchestrator = _orchestrator(clock=clock)
        regenerate = Regenerator(["still blonde"], clock=clock, advance=20.0)

        result = await orchestrator.run(
            "She is blonde now.", context, regenerate, CorrectionOptions(timeout_ms=10000)
        )

        assert result.timed_out is True
        assert result.is_valid is False
        assert result.final_text == "still blonde"
        assert result.attempt_count == 2
        assert len(regenerate.calls) == 1

    @pytest.mark.asyncio
    async def test_generation_failure_keeps_last_good_text(self, context):
        orchestrator = _orchestrator()
        regenerate = Regenerator([GenerationError("model down")])

        result = await orchestrator.run("She is blonde now.", context, regenerate)

        assert result.is_valid is False
        assert result.final_text == "She is blonde now."
        assert result.attempt_count == 1
        assert orchestrator.stats().generation_failures == 1

    @pytest.mark.asyncio
    async def test_empty_regeneration_is_text(self, context):
        orchestrator = _orchestrator()
        regenerate = Regenerator([""])

        result = await orchestrator.run("She is blonde now.", context, regenerate)

        assert result.is_valid is True
        assert result.final_text == ""
        assert result.attempt_count == 2

    @pytest.mark.asyncio
    async def test_oracle_error_blocks_the_field(self, context):
        oracle = FakeOracle()
        oracle.error = RuntimeError("db gone")
        orchestrator = _orchestrator(oracle=oracle)
        regenerate = Regenerator(["calm"])

        result = await orchestrator.run("She is blonde now.", context, regenerate)

        assert result.attempt_count == 2
        assert result.blocked_updates[0].confidence == 0.0
        assert result.blocked_updates[0].reason.startswith("Validation error:")

    @pytest.mark.asyncio
    async def test_extraction_failure_fails_open(self, context):
        class BrokenExtraction:
            def extract(self, text, message_id=None):
                raise RuntimeError("adapter exploded")

        evaluator = FieldProtectionEvaluator(FakeOracle(), FakeHistory())
        orchestrator = ResponseCorrectionOrchestrator(BrokenExtraction(), evaluator)

        result = await orchestrator.run("She is blonde now.", context, Regenerator([]))

        assert result.is_valid is True
        assert result.attempt_count == 1

    @pytest.mark.asyncio
    async def test_blocked_update_without_suggestion_gets_default(self, context):
        class SilentEvaluator(FieldProtectionEvaluator):
            async def evaluate(self, request, context):
                result = await super().evaluate(request, context)
                result.suggested_correction = None
                return result

        evaluator = SilentEvaluator(FakeOracle(immutable={"appearance.hair.color"}), FakeHistory())
        orchestrator = ResponseCorrectionOrchestrator(
            UpdateExtractionAdapter(FakeExtractor(BLONDE)), evaluator
        )
        regenerate = Regenerator(["calm"])

        result = await orchestrator.run("blonde", context, regenerate)

        assert result.blocked_updates[0].suggested_correction == DEFAULT_SUGGESTION
        assert f"- appearance.hair: {DEFAULT_SUGGESTION}" in regenerate.calls[0][0]


# =========================================================================
# QUICK VALIDATION + STATS
# =========================================================================


class TestQuickValidateAndStats:
    @pytest.mark.asyncio
    async def test_quick_validate(self, context):
        orchestrator = _orchestrator()
        assert await orchestrator.quick_validate("Her brown hair shines.", context) is True
        assert await orchestrator.quick_validate("She is blonde now.", context) is False

    @pytest.mark.asyncio
    async def test_stats_accumulate(self, context):
        orchestrator = _orchestrator()
        await orchestrator.run("calm", context, Regenerator([]))
        await orchestrator.run("blonde", context, Regenerator(["calm"]))
        await orchestrator.run("blonde", context, Regenerator([]), CorrectionOptions(bypass=True))

        stats = orchestrator.stats().to_dict()
        assert stats["total_validations"] == 3
        assert stats["bypassed"] == 1
        assert stats["valid"] == 2
        assert stats["retries"] == 1
        assert stats["blocked_updates"] == 1
        assert stats["retry_rate"] == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_real_extractor_end_to_end(self, context):
        evaluator = FieldProtectionEvaluator(
            FakeOracle(immutable={"appearance.eyes.color"}), FakeHistory()
        )
        orchestrator = ResponseCorrectionOrchestrator(
            UpdateExtractionAdapter(KeyValueTraitExtractor()), evaluator
        )
        regenerate = Regenerator(["*She blinks slowly.*"])

        result = await orchestrator.run("*She blinks.* eyes: red", context, regenerate)

        assert result.is_valid is True
        assert result.final_text == "*She blinks slowly.*"
        assert result.blocked_updates[0].field_path == "appearance.eyes.color"
