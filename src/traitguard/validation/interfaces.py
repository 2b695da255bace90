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
Traitguard -- Collaborator Protocols (v1.2.0)

The pipeline talks to four external collaborators through these protocols.
Concrete implementations ship in traitguard.store, traitguard.llm and
traitguard.validation.extraction; tests use in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from traitguard.validation.types import FieldChange, PolicyDecision


@dataclass
class ChatOptions:
    """Sampling parameters for one generator call."""

    temperature: float = 0.7
    max_tokens: int = 300
    stop_sequences: list[str] = field(default_factory=list)


class PolicyOracle(Protocol):
    """System of record for what is protected at all."""

    async def decide(
        self,
        subject_id: str,
        field_path: str,
        confidence: float,
        explicit_mention: bool,
        character_agency: bool,
    ) -> PolicyDecision:
        """Decide one field change. Must answer even for unknown fields."""
        ...


class ChangeHistoryStore(Protocol):
    """Durable change history and current subject state."""

    async def append(
        self,
        subject_id: str,
        field_path: str,
        previous_value: Any,
        new_value: Any,
        confidence: float,
        source_text: str,
        source: str,
        message_id: str | None = None,
    ) -> str:
        """Append a change record and return its identifier."""
        ...

    async def load_recent(self, subject_id: str, limit: int) -> list[FieldChange]:
        """Most recent changes, newest first."""
        ...

    async def load_state(self, subject_id: str) -> dict[str, Any]:
        """Current subject state. Raises SubjectNotFoundError if unknown."""
        ...


class TraitExtractor(Protocol):
    """Turns free text into {path: value} for one field category."""

    def extract(self, text: str, category: str) -> dict[str, Any]:
        ...


class TextGenerator(Protocol):
    """Chat-style text generator. Raises GenerationError on failure."""

    model: str

    async def generate(self, messages: list[dict[str, str]], options: ChatOptions) -> str:
        ...
