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
Traitguard -- Validated Generation Service (v1.2.0)

Wraps the text generator with character trait protection:

    build context -> generate -> correction loop -> format -> record changes

Validation runs only when it is enabled, a subject is given and the caller
is not bypassing. If the subject's context cannot be built, the call goes
through unvalidated.

The service never raises. Any failure of the initial generation comes back
as success=False with the error message; persistence failures are logged
and dropped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from traitguard.core.config import TraitguardSettings
from traitguard.core.logging import TraitguardLogger, get_logger
from traitguard.errors import GenerationError
from traitguard.validation.correction import ResponseCorrectionOrchestrator
from traitguard.validation.formatting import (
    DEFAULT_ADVENTURE_TYPE,
    format_response,
    get_context_window_size,
    get_format_profile,
    get_stop_sequences,
)
from traitguard.validation.interfaces import ChatOptions, TextGenerator
from traitguard.validation.protection import FieldProtectionEvaluator
from traitguard.validation.types import (
    CorrectionLoopResult,
    CorrectionOptions,
    ValidationContext,
)

logger = logging.getLogger("traitguard.validation.service")

_CORRECTION_MESSAGE = (
    "CORRECTION NEEDED: {prompt}\n\n"
    "Please rewrite your response to address these issues while maintaining "
    "the same emotional tone and character voice."
)


@dataclass
class ValidatedLLMRequest:
    """One chat turn to generate a character reply for."""

    conversation_id: str
    user_message: str
    system_prompt: str
    adventure_type: str = DEFAULT_ADVENTURE_TYPE
    character_name: str | None = None
    character_pronoun: str | None = None
    message_history: list[dict[str, str]] = field(default_factory=list)
    subject_id: str | None = None
    context_window: int | None = None


@dataclass
class GenerationOptions:
    enable_validation: bool = True
    bypass_for_admin_users: bool = False
    quick_validation_only: bool = False


@dataclass
class ResponseMetadata:
    model: str
    processing_time_ms: int
    validation_enabled: bool
    retries_used: int
    blocked_updates_count: int
    change_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "processing_time_ms": self.processing_time_ms,
            "validation_enabled": self.validation_enabled,
            "retries_used": self.retries_used,
            "blocked_updates_count": self.blocked_updates_count,
            "change_ids": list(self.change_ids),
        }


@dataclass
class ValidatedLLMResponse:
    success: bool
    content: str
    validation_result: CorrectionLoopResult
    metadata: ResponseMetadata
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "content": self.content,
            "validation_result": self.validation_result.to_dict(),
            "metadata": self.metadata.to_dict(),
            "error": self.error,
        }


class ValidatedGenerationService:
    """
    Character-safe text generation.

    Usage:
        service = ValidatedGenerationService(generator, evaluator, orchestrator, settings)
        response = await service.generate(request, GenerationOptions())
        if response.success:
            send(response.content)
    """

    def __init__(
        self,
        generator: TextGenerator,
        evaluator: FieldProtectionEvaluator,
        orchestrator: ResponseCorrectionOrchestrator,
        settings: TraitguardSettings | None = None,
        log: TraitguardLogger | None = None,
    ):
        self.generator = generator
        self.evaluator = evaluator
        self.orchestrator = orchestrator
        self.settings = settings or TraitguardSettings()
        self.log = log or get_logger()

    async def generate(
        self,
        request: ValidatedLLMRequest,
        options: GenerationOptions | None = None,
    ) -> ValidatedLLMResponse:
        opts = options or GenerationOptions()
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            should_validate = bool(
                opts.enable_validation and request.subject_id and not opts.bypass_for_admin_users
            )

            context: ValidationContext | None = None
            if should_validate:
                try:
                    context = await self.evaluator.build_context(
                        request.subject_id,
                        request.user_message,
                        self.settings.recent_change_limit,
                    )
                except Exception as e:
                    logger.warning(
                        "Failed to build validation context for %s, proceeding without validation: %s",
                        request.subject_id,
                        e,
                    )
                    self.log.warn(
                        "Service",
                        "Validation disabled: context unavailable",
                        subject=request.subject_id,
                        error=str(e)[:200],
                    )
                    should_validate = False

            async def regenerate(correction_prompt: str, retry: int) -> str:
                # Retry n of the loop is generation attempt n + 1
                return await self._generate_text(request, correction_prompt, retry + 1)

            if should_validate and context is not None:
                initial = await self._generate_text(request)
                if opts.quick_validation_only:
                    is_valid = await self.orchestrator.quick_validate(initial, context)
                    result = CorrectionLoopResult(
                        is_valid=is_valid,
                        final_text=initial,
                        attempt_count=1,
                        elapsed_ms=elapsed_ms(),
                    )
                else:
                    result = await self.orchestrator.run(
                        initial,
                        context,
                        regenerate,
                        CorrectionOptions(
                            max_retries=self.settings.max_retries,
                            timeout_ms=self.settings.validation_timeout_ms,
                            bypass=False,
                            log_blocked=True,
                        ),
                    )
                self._log_validation(context.subject_id, result)
            else:
                initial = await self._generate_text(request)
                result = CorrectionLoopResult(
                    is_valid=True,
                    final_text=initial,
                    attempt_count=1,
                    elapsed_ms=elapsed_ms(),
                )

            content = format_response(
                result.final_text,
                request.adventure_type,
                request.character_name,
                pronoun=request.character_pronoun,
            )

            change_ids: list[str] = []
            if should_validate and context is not None and result.is_valid:
                change_ids = await self._apply_approved(content, context)

            return ValidatedLLMResponse(
                success=True,
                content=content,
                validation_result=result,
                metadata=ResponseMetadata(
                    model=self.generator.model,
                    processing_time_ms=elapsed_ms(),
                    validation_enabled=should_validate,
                    retries_used=max(0, result.attempt_count - 1),
                    blocked_updates_count=len(result.blocked_updates),
                    change_ids=change_ids,
                ),
            )

        except Exception as e:
            logger.error("Error in validated generation service: %s", e)
            self.log.error("Service", "Generation failed", error=str(e)[:200])
            return ValidatedLLMResponse(
                success=False,
                content="",
                validation_result=CorrectionLoopResult(
                    is_valid=False,
                    final_text="",
                    attempt_count=0,
                    elapsed_ms=elapsed_ms(),
                ),
                metadata=ResponseMetadata(
                    model=getattr(self.generator, "model", "unknown"),
                    processing_time_ms=elapsed_ms(),
                    validation_enabled=False,
                    retries_used=0,
                    blocked_updates_count=0,
                ),
                error=str(e) or type(e).__name__,
            )

    # =========================================================================
    # GENERATION
    # =========================================================================

    def _build_messages(
        self, request: ValidatedLLMRequest, correction_prompt: str | None, attempt: int
    ) -> list[dict[str, str]]:
        window = get_context_window_size(request.adventure_type, request.context_window)
        history = request.message_history[-window:] if window > 0 else []

        messages = [{"role": "system", "content": request.system_prompt}]
        messages.extend(history)
        messages.append({"role": "user", "content": request.user_message})

        if correction_prompt and attempt > 1:
            messages.append(
                {"role": "system", "content": _CORRECTION_MESSAGE.format(prompt=correction_prompt)}
            )
        return messages

    async def _generate_text(
        self,
        request: ValidatedLLMRequest,
        correction_prompt: str | None = None,
        attempt: int = 1,
    ) -> str:
        """One generator call. Raises GenerationError on failure or empty output."""
        profile = get_format_profile(request.adventure_type)
        chat_options = ChatOptions(
            temperature=(
                self.settings.temperature if attempt <= 1 else self.settings.retry_temperature
            ),
            max_tokens=profile.max_tokens,
            stop_sequences=get_stop_sequences(request.adventure_type, request.character_name),
        )
        messages = self._build_messages(request, correction_prompt, attempt)

        call_started = time.monotonic()
        try:
            text = await self.generator.generate(messages, chat_options)
        except Exception as e:
            self.log.llm(
                "Service",
                model=self.generator.model,
                attempt=attempt,
                latency_ms=int((time.monotonic() - call_started) * 1000),
                success=False,
                error=str(e)[:200],
            )
            if isinstance(e, GenerationError):
                raise
            raise GenerationError(str(e)) from e

        self.log.llm(
            "Service",
            model=self.generator.model,
            attempt=attempt,
            latency_ms=int((time.monotonic() - call_started) * 1000),
            conversation=request.conversation_id,
        )
        if not text or not text.strip():
            raise GenerationError("No response generated from LLM")
        return text

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _apply_approved(self, content: str, context: ValidationContext) -> list[str]:
        """Record every allowed update found in the final text. Never raises."""
        change_ids: list[str] = []
        try:
            requests = self.orchestrator.extraction.extract(content)
            scoped = context.with_message_context(content)
            for req in requests:
                result = await self.evaluator.evaluate(req, scoped)
                if not result.allowed:
                    continue
                try:
                    change_ids.append(await self.evaluator.record(req, scoped, result))
                except Exception as e:
                    logger.error("Error recording change to %s: %s", req.field_path, e)
        except Exception as e:
            logger.error("Error applying approved character updates: %s", e)
        return change_ids

    def _log_validation(self, subject_id: str, result: CorrectionLoopResult) -> None:
        for blocked in result.blocked_updates:
            self.log.blocked(
                subject_id,
                blocked.field_path,
                reason=blocked.reason,
                confidence=blocked.confidence,
            )
        self.log.validation(
            subject_id,
            is_valid=result.is_valid,
            attempts=result.attempt_count,
            blocked=len(result.blocked_updates),
            timed_out=result.timed_out,
            elapsed_ms=result.elapsed_ms,
        )

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def health_check(self) -> dict[str, bool]:
        """Generator reachability and store connectivity."""
        llm_available = False
        database_connected = False

        ping_llm = getattr(self.generator, "ping", None)
        if ping_llm is not None:
            try:
                llm_available = bool(await ping_llm())
            except Exception as e:
                logger.warning("Generator health check failed: %s", e)

        ping_store = getattr(self.evaluator.history, "ping", None)
        if ping_store is not None:
            try:
                database_connected = bool(await ping_store())
            except Exception as e:
                logger.warning("Store health check failed: %s", e)

        return {
            "llm_available": llm_available,
            "database_connected": database_connected,
            "validation_ready": database_connected,
        }
