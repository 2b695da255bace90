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
Traitguard -- Response Correction Loop (v1.2.0)

Turns a non-deterministic generator into a pipeline with predictable
worst-case behavior:

    GENERATED -> VALIDATING -> (DONE | CORRECTING -> GENERATED -> ...)

BOUNDS:
    - at most max_retries + 1 validated attempts
    - wall-clock timeout checked at the top of every attempt
    - the last generated text is ALWAYS returned, never discarded

The timeout is cooperative. It never interrupts an in-flight regenerate()
call, so total elapsed time can exceed timeout_ms by one generation. Callers
that need a hard deadline wrap their generator in asyncio.wait_for(); the
resulting exception is handled like any other generation failure.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from traitguard.validation.extraction import UpdateExtractionAdapter
from traitguard.validation.protection import FieldProtectionEvaluator, field_label
from traitguard.validation.types import (
    BlockedUpdate,
    CorrectionLoopResult,
    CorrectionOptions,
    ValidationContext,
)

logger = logging.getLogger("traitguard.validation.correction")

Regenerate = Callable[[str, int], Awaitable[str]]

DEFAULT_SUGGESTION = "Please avoid changing this field."


class LoopState(str, Enum):
    """Correction loop states."""

    GENERATED = "generated"
    VALIDATING = "validating"
    CORRECTING = "correcting"
    DONE = "done"


# =============================================================================
# CORRECTION PROMPT
# =============================================================================

_CORRECTION_TEMPLATE = """{urgency}Your previous response attempted to modify protected character traits that cannot be changed:

{issues}

Please rewrite your response to avoid changing these characteristics while maintaining the same conversational flow and emotional content. Keep all dialogue and actions, but remove or modify any descriptions that would alter the protected traits listed above.

Remember:
- Focus on temporary changes (clothing, mood, actions) rather than permanent traits
- Use existing character descriptions rather than creating new ones
- Maintain the same personality and emotional tone
- Keep all dialogue and character interactions intact"""


def build_correction_prompt(blocked: list[BlockedUpdate], attempt: int) -> str:
    """One bullet per blocked field; urgency escalates after the first attempt."""
    issues = "\n".join(
        f"- {field_label(update.field_path)}: {update.suggested_correction}" for update in blocked
    )
    urgency = "CRITICAL: " if attempt > 1 else ""
    return _CORRECTION_TEMPLATE.format(urgency=urgency, issues=issues)


# =============================================================================
# STATS
# =============================================================================


@dataclass
class ValidationStats:
    """In-process counters for monitoring."""

    total_runs: int = 0
    bypassed_runs: int = 0
    valid_runs: int = 0
    blocked_updates: int = 0
    retries: int = 0
    timeouts: int = 0
    generation_failures: int = 0
    total_elapsed_ms: int = 0

    def observe(self, result: CorrectionLoopResult) -> None:
        self.total_runs += 1
        self.valid_runs += int(result.is_valid)
        self.blocked_updates += len(result.blocked_updates)
        self.retries += max(0, result.attempt_count - 1)
        self.timeouts += int(result.timed_out)
        self.total_elapsed_ms += result.elapsed_ms

    @property
    def average_processing_ms(self) -> float:
        validated = self.total_runs - self.bypassed_runs
        return self.total_elapsed_ms / validated if validated > 0 else 0.0

    @property
    def retry_rate(self) -> float:
        validated = self.total_runs - self.bypassed_runs
        return self.retries / validated if validated > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_validations": self.total_runs,
            "bypassed": self.bypassed_runs,
            "valid": self.valid_runs,
            "blocked_updates": self.blocked_updates,
            "retries": self.retries,
            "timeouts": self.timeouts,
            "generation_failures": self.generation_failures,
            "average_processing_ms": round(self.average_processing_ms, 1),
            "retry_rate": round(self.retry_rate, 4),
        }


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class ResponseCorrectionOrchestrator:
    """
    Drives the bounded generate -> validate -> correct loop.

    Usage:
        orchestrator = ResponseCorrectionOrchestrator(extraction, evaluator)
        result = await orchestrator.run(text, context, regenerate, CorrectionOptions())
    """

    def __init__(
        self,
        extraction: UpdateExtractionAdapter,
        evaluator: FieldProtectionEvaluator,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.extraction = extraction
        self.evaluator = evaluator
        self._clock = clock
        self._stats = ValidationStats()

    def stats(self) -> ValidationStats:
        return self._stats

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    def _transition(self, state: LoopState, attempt: int, subject_id: str) -> None:
        logger.debug("Correction loop %s: attempt=%d subject=%s", state.value, attempt, subject_id)

    async def run(
        self,
        initial_text: str,
        context: ValidationContext,
        regenerate: Regenerate,
        options: CorrectionOptions | None = None,
    ) -> CorrectionLoopResult:
        opts = options or CorrectionOptions()
        started = self._clock()

        if opts.bypass:
            self._stats.bypassed_runs += 1
            self._stats.total_runs += 1
            return CorrectionLoopResult(
                is_valid=True,
                final_text=initial_text,
                blocked_updates=[],
                attempt_count=1,
                elapsed_ms=self._elapsed_ms(started),
            )

        result = await self._loop(initial_text, context, regenerate, opts, started)
        self._stats.observe(result)
        return result

    async def _loop(
        self,
        initial_text: str,
        context: ValidationContext,
        regenerate: Regenerate,
        opts: CorrectionOptions,
        started: float,
    ) -> CorrectionLoopResult:
        current_text = initial_text
        all_blocked: list[BlockedUpdate] = []
        attempt = 1

        for attempt in range(1, opts.max_retries + 2):
            self._transition(LoopState.GENERATED, attempt, context.subject_id)

            if self._elapsed_ms(started) > opts.timeout_ms:
                logger.warning(
                    "Correction loop timeout after %d ms, using last response (subject=%s)",
                    self._elapsed_ms(started),
                    context.subject_id,
                )
                self._transition(LoopState.DONE, attempt, context.subject_id)
                return CorrectionLoopResult(
                    is_valid=False,
                    final_text=current_text,
                    blocked_updates=all_blocked,
                    attempt_count=attempt,
                    timed_out=True,
                    elapsed_ms=self._elapsed_ms(started),
                )

            self._transition(LoopState.VALIDATING, attempt, context.subject_id)
            blocked = await self.validate_text(current_text, context)

            if not blocked:
                self._transition(LoopState.DONE, attempt, context.subject_id)
                return CorrectionLoopResult(
                    is_valid=True,
                    final_text=current_text,
                    blocked_updates=all_blocked,
                    attempt_count=attempt,
                    elapsed_ms=self._elapsed_ms(started),
                )

            all_blocked.extend(blocked)

            if attempt > opts.max_retries:
                if opts.log_blocked:
                    logger.warning(
                        "Response still invalid after %d attempt(s) (subject=%s): %s",
                        attempt,
                        context.subject_id,
                        [b.field_path for b in blocked],
                    )
                self._transition(LoopState.DONE, attempt, context.subject_id)
                return CorrectionLoopResult(
                    is_valid=False,
                    final_text=current_text,
                    blocked_updates=all_blocked,
                    attempt_count=attempt,
                    elapsed_ms=self._elapsed_ms(started),
                )

            self._transition(LoopState.CORRECTING, attempt, context.subject_id)
            prompt = build_correction_prompt(blocked, attempt)
            try:
                current_text = await regenerate(prompt, attempt)
            except Exception as e:
                logger.error("Error generating corrected response (attempt %d): %s", attempt, e)
                self._stats.generation_failures += 1
                break

        self._transition(LoopState.DONE, attempt, context.subject_id)
        return CorrectionLoopResult(
            is_valid=False,
            final_text=current_text,
            blocked_updates=all_blocked,
            attempt_count=attempt,
            elapsed_ms=self._elapsed_ms(started),
        )

    async def validate_text(self, text: str, context: ValidationContext) -> list[BlockedUpdate]:
        """Blocked updates for one response. Empty list means the text is valid.

        An internal failure here fails OPEN for the attempt: the conversation
        must never break because the validator did.
        """
        try:
            requests = self.extraction.extract(text)
            if not requests:
                return []

            scoped = context.with_message_context(text)
            results = await self.evaluator.evaluate_many(requests, scoped)

            blocked: list[BlockedUpdate] = []
            for request, result in zip(requests, results):
                if result.allowed:
                    continue
                blocked.append(
                    BlockedUpdate(
                        field_path=request.field_path,
                        attempted_value=request.new_value,
                        reason=result.reason,
                        confidence=result.confidence,
                        suggested_correction=result.suggested_correction or DEFAULT_SUGGESTION,
                    )
                )
                logger.info(
                    "Blocked %s (subject=%s, confidence=%.3f): %s",
                    request.field_path,
                    context.subject_id,
                    result.confidence,
                    result.reason,
                )
            return blocked

        except Exception as e:
            logger.error("Error validating response, allowing it through: %s", e)
            return []

    async def quick_validate(self, text: str, context: ValidationContext) -> bool:
        """Single validation pass, no retries. Fails open."""
        try:
            blocked = await self.validate_text(text, context)
            return not blocked
        except Exception as e:
            logger.error("Error in quick validation: %s", e)
            return True
