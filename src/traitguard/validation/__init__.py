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
Traitguard validation pipeline.

    ConfidenceScorer              -- how strongly text asserts a field change
    FieldProtectionEvaluator      -- evidence + policy oracle -> allow / deny
    UpdateExtractionAdapter       -- response text -> candidate field updates
    ResponseCorrectionOrchestrator -- bounded generate/validate/correct loop
    ValidatedGenerationService    -- the whole thing around a text generator
"""

from traitguard.validation.correction import (
    LoopState,
    ResponseCorrectionOrchestrator,
    ValidationStats,
    build_correction_prompt,
)
from traitguard.validation.extraction import (
    FieldCategory,
    KeyValueTraitExtractor,
    UpdateExtractionAdapter,
)
from traitguard.validation.formatting import (
    FORMAT_PROFILES,
    FormatProfile,
    format_response,
    get_context_window_size,
    get_format_profile,
    get_stop_sequences,
)
from traitguard.validation.interfaces import (
    ChangeHistoryStore,
    ChatOptions,
    PolicyOracle,
    TextGenerator,
    TraitExtractor,
)
from traitguard.validation.protection import FieldProtectionEvaluator
from traitguard.validation.scorer import CONFIDENCE_WEIGHTS, ConfidenceScorer
from traitguard.validation.service import (
    GenerationOptions,
    ResponseMetadata,
    ValidatedGenerationService,
    ValidatedLLMRequest,
    ValidatedLLMResponse,
)
from traitguard.validation.types import (
    BlockedUpdate,
    ConfidenceFactors,
    CorrectionLoopResult,
    CorrectionOptions,
    DecisionCode,
    EstablishedTrait,
    FieldChange,
    FieldUpdateRequest,
    PolicyDecision,
    TraitSource,
    ValidationContext,
    ValidationResult,
)

__all__ = [
    "BlockedUpdate",
    "CONFIDENCE_WEIGHTS",
    "ChangeHistoryStore",
    "ChatOptions",
    "ConfidenceFactors",
    "ConfidenceScorer",
    "CorrectionLoopResult",
    "CorrectionOptions",
    "DecisionCode",
    "EstablishedTrait",
    "FORMAT_PROFILES",
    "FieldCategory",
    "FieldChange",
    "FieldProtectionEvaluator",
    "FieldUpdateRequest",
    "FormatProfile",
    "GenerationOptions",
    "KeyValueTraitExtractor",
    "LoopState",
    "PolicyDecision",
    "PolicyOracle",
    "ResponseCorrectionOrchestrator",
    "ResponseMetadata",
    "TextGenerator",
    "TraitExtractor",
    "TraitSource",
    "UpdateExtractionAdapter",
    "ValidatedGenerationService",
    "ValidatedLLMRequest",
    "ValidatedLLMResponse",
    "ValidationContext",
    "ValidationResult",
    "ValidationStats",
    "build_correction_prompt",
    "format_response",
    "get_context_window_size",
    "get_format_profile",
    "get_stop_sequences",
]
