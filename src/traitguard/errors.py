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
"""Traitguard exception types."""


class TraitguardError(Exception):
    """Base class for Traitguard errors."""


class GenerationError(TraitguardError):
    """Raised when the text generator fails to produce a response.

    Distinct from an empty response: callers must be able to tell
    "the model said nothing" apart from "the call failed".
    """


class SubjectNotFoundError(TraitguardError, LookupError):
    """Raised when a subject (character) has no stored state."""


class RuleValidationError(TraitguardError, ValueError):
    """Raised when a protection rule definition is malformed."""

    def __init__(self, rule_id: str, errors: list[str]):
        self.rule_id = rule_id
        self.errors = errors
        msg = f"Rule '{rule_id}' validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)
