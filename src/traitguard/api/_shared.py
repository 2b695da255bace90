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
Traitguard -- Shared API Utilities

Lazily wired service singleton and the Pydantic models shared across
route modules.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from traitguard.core.config import TraitguardSettings, load_settings
from traitguard.core.logging import TraitguardLogger, get_logger
from traitguard.llm.ollama import OllamaChatGenerator
from traitguard.store.rules import default_rules, load_rules
from traitguard.store.sqlite_store import SQLiteTraitStore
from traitguard.validation.correction import ResponseCorrectionOrchestrator
from traitguard.validation.extraction import KeyValueTraitExtractor, UpdateExtractionAdapter
from traitguard.validation.protection import FieldProtectionEvaluator
from traitguard.validation.service import ValidatedGenerationService

logger = logging.getLogger("traitguard.api.server")


# =============================================================================
# TRAITGUARD LOGGER
# =============================================================================

_tg_log: TraitguardLogger | None = None


def _get_tg_log() -> TraitguardLogger:
    global _tg_log
    if _tg_log is None:
        _tg_log = get_logger()
    return _tg_log


# =============================================================================
# SERVICE WIRING
# =============================================================================

_service: ValidatedGenerationService | None = None
_store: SQLiteTraitStore | None = None
_service_lock: asyncio.Lock | None = None


async def build_service(settings: TraitguardSettings) -> tuple[ValidatedGenerationService, SQLiteTraitStore]:
    """Wire store, generator, evaluator and orchestrator from settings.

    Seeds protection rules (from rules_path, else the bundled defaults) when
    the store has none.
    """
    store = SQLiteTraitStore(settings.db_path)
    if not await store.list_rules():
        rules = load_rules(settings.rules_path) if settings.rules_path else default_rules()
        await store.add_rules(rules)
        logger.info("Seeded %d protection rule(s)", len(rules))

    generator = OllamaChatGenerator(
        base_url=settings.ollama_base_url,
        model=settings.model,
        timeout=settings.request_timeout,
    )
    evaluator = FieldProtectionEvaluator(oracle=store, history=store)
    orchestrator = ResponseCorrectionOrchestrator(
        UpdateExtractionAdapter(KeyValueTraitExtractor()), evaluator
    )
    service = ValidatedGenerationService(
        generator, evaluator, orchestrator, settings, log=_get_tg_log()
    )
    return service, store


async def get_service() -> ValidatedGenerationService:
    """Process-wide service, built once on first use."""
    global _service, _store, _service_lock
    if _service is not None:
        return _service
    if _service_lock is None:
        _service_lock = asyncio.Lock()
    async with _service_lock:
        if _service is None:
            _service, _store = await build_service(load_settings())
    return _service


async def get_store() -> SQLiteTraitStore:
    await get_service()
    return _store


def set_service(service: ValidatedGenerationService | None, store: SQLiteTraitStore | None = None) -> None:
    """Install a pre-built service (embedding, tests). None resets."""
    global _service, _store, _service_lock
    _service = service
    _store = store
    _service_lock = None


# =============================================================================
# PYDANTIC MODELS
# =============================================================================


class ChatMessage(BaseModel):
    role: str
    content: str


class GenerateRequest(BaseModel):
    conversation_id: str
    user_message: str
    system_prompt: str
    adventure_type: str = "general"
    character_name: Optional[str] = None
    character_pronoun: Optional[str] = None
    message_history: List[ChatMessage] = Field(default_factory=list)
    subject_id: Optional[str] = None
    context_window: Optional[int] = None
    # Options
    enable_validation: bool = True
    bypass_for_admin_users: bool = False
    quick_validation_only: bool = False


class SubjectStateRequest(BaseModel):
    state: Dict[str, Any]
