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
"""Traitguard persistence: protection rules and the SQLite trait store."""

from traitguard.store.rules import (
    DEFAULT_RULES_YAML,
    ProtectionLevel,
    ProtectionRule,
    default_rules,
    load_rules,
)
from traitguard.store.sqlite_store import SQLiteTraitStore

__all__ = [
    "DEFAULT_RULES_YAML",
    "ProtectionLevel",
    "ProtectionRule",
    "SQLiteTraitStore",
    "default_rules",
    "load_rules",
]
