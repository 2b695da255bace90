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
Traitguard -- SQLite Trait Store (v1.2.0)

System of record for subjects, protection rules and the append-only change
history. One class implements both PolicyOracle and ChangeHistoryStore.

Tables:
    subjects               -- current state per subject (JSON)
    field_protection_rules -- glob pattern -> protection level and thresholds
    field_changes          -- append-only change history

sqlite3 is blocking; every async method hops to a worker thread and opens
its own connection there.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from traitguard.errors import SubjectNotFoundError
from traitguard.store.rules import ProtectionLevel, ProtectionRule, select_rule
from traitguard.validation.types import DecisionCode, FieldChange, PolicyDecision

logger = logging.getLogger("traitguard.store.sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


_TIMESTAMP_KEYS = ("established_at", "updated_at")


def _set_path(state: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = state
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


class SQLiteTraitStore:
    """
    Policy oracle and change-history store on a single SQLite file.

    Usage:
        store = SQLiteTraitStore("/tmp/traitguard.db")
        await store.upsert_subject("char-42", {"appearance": {"hair": {"color": "brown"}}})
        await store.add_rule(ProtectionRule("eyes", "appearance.eyes*", "immutable"))
        decision = await store.decide("char-42", "appearance.eyes.color", 0.9, True, True)
    """

    def __init__(
        self,
        db_path: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db_path = db_path or str(Path.home() / ".traitguard" / "traitguard.db")
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subjects (
                    subject_id TEXT PRIMARY KEY,
                    state_json TEXT NOT NULL DEFAULT '{}',
                    established_at TEXT,
                    updated_at TEXT NOT NULL
                )
            """)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(subjects)")}
            if "established_at" not in columns:
                conn.execute("ALTER TABLE subjects ADD COLUMN established_at TEXT")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS field_protection_rules (
                    rule_id TEXT PRIMARY KEY,
                    field_pattern TEXT NOT NULL,
                    protection_level TEXT NOT NULL,
                    min_confidence REAL NOT NULL DEFAULT 0.6,
                    require_explicit_mention INTEGER NOT NULL DEFAULT 0,
                    require_character_agency INTEGER NOT NULL DEFAULT 0,
                    cooldown_seconds INTEGER NOT NULL DEFAULT 0,
                    priority INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS field_changes (
                    change_id TEXT PRIMARY KEY,
                    subject_id TEXT NOT NULL,
                    field_path TEXT NOT NULL,
                    previous_value TEXT,
                    new_value TEXT,
                    confidence REAL NOT NULL,
                    source_text TEXT NOT NULL DEFAULT '',
                    source TEXT NOT NULL DEFAULT 'extracted',
                    message_id TEXT,
                    changed_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_changes_subject_time
                ON field_changes (subject_id, changed_at)
            """)
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # SUBJECTS
    # =========================================================================

    async def upsert_subject(self, subject_id: str, state: dict[str, Any]) -> None:
        await asyncio.to_thread(self._upsert_subject, subject_id, state)

    def _upsert_subject(self, subject_id: str, state: dict[str, Any]) -> None:
        # Replacing the state re-establishes every trait in it
        now = self._clock().isoformat()
        stored = {k: v for k, v in state.items() if k not in _TIMESTAMP_KEYS}
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO subjects (subject_id, state_json, established_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (subject_id, json.dumps(stored), now, now),
            )
            conn.commit()
        finally:
            conn.close()

    async def load_state(self, subject_id: str) -> dict[str, Any]:
        """Current state plus established_at and updated_at keys.

        established_at is when the state was last seeded through upsert_subject;
        recorded changes move only updated_at. Raises SubjectNotFoundError.
        """
        return await asyncio.to_thread(self._load_state, subject_id)

    def _load_state(self, subject_id: str) -> dict[str, Any]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT state_json, established_at, updated_at FROM subjects WHERE subject_id = ?",
                (subject_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise SubjectNotFoundError(f"Subject not found: {subject_id}")
        state = json.loads(row["state_json"])
        state["established_at"] = row["established_at"] or row["updated_at"]
        state["updated_at"] = row["updated_at"]
        return state

    # =========================================================================
    # RULES
    # =========================================================================

    async def add_rule(self, rule: ProtectionRule) -> None:
        await asyncio.to_thread(self._add_rules, [rule])

    async def add_rules(self, rules: list[ProtectionRule]) -> None:
        await asyncio.to_thread(self._add_rules, rules)

    def _add_rules(self, rules: list[ProtectionRule]) -> None:
        conn = self._connect()
        try:
            conn.executemany(
                "INSERT OR REPLACE INTO field_protection_rules "
                "(rule_id, field_pattern, protection_level, min_confidence, "
                "require_explicit_mention, require_character_agency, cooldown_seconds, "
                "priority, is_active) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        r.rule_id,
                        r.field_pattern,
                        r.protection_level,
                        r.min_confidence,
                        int(r.require_explicit_mention),
                        int(r.require_character_agency),
                        r.cooldown_seconds,
                        r.priority,
                        int(r.is_active),
                    )
                    for r in rules
                ],
            )
            conn.commit()
        finally:
            conn.close()

    async def list_rules(self) -> list[ProtectionRule]:
        return await asyncio.to_thread(self._list_rules)

    def _list_rules(self) -> list[ProtectionRule]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM field_protection_rules ORDER BY priority DESC, rule_id"
            ).fetchall()
        finally:
            conn.close()
        return [
            ProtectionRule(
                rule_id=row["rule_id"],
                field_pattern=row["field_pattern"],
                protection_level=row["protection_level"],
                min_confidence=row["min_confidence"],
                require_explicit_mention=bool(row["require_explicit_mention"]),
                require_character_agency=bool(row["require_character_agency"]),
                cooldown_seconds=row["cooldown_seconds"],
                priority=row["priority"],
                is_active=bool(row["is_active"]),
            )
            for row in rows
        ]

    # =========================================================================
    # POLICY ORACLE
    # =========================================================================

    async def decide(
        self,
        subject_id: str,
        field_path: str,
        confidence: float,
        explicit_mention: bool,
        character_agency: bool,
    ) -> PolicyDecision:
        return await asyncio.to_thread(
            self._decide, subject_id, field_path, confidence, explicit_mention, character_agency
        )

    def _decide(
        self,
        subject_id: str,
        field_path: str,
        confidence: float,
        explicit_mention: bool,
        character_agency: bool,
    ) -> PolicyDecision:
        rule = select_rule(self._list_rules(), field_path)
        if rule is None:
            return PolicyDecision.no_rule()

        def deny(reason: str) -> PolicyDecision:
            return PolicyDecision(allowed=False, reason=reason, rule_id=rule.rule_id)

        if rule.protection_level == ProtectionLevel.IMMUTABLE.value:
            return deny("Field is immutable")
        if confidence < rule.min_confidence:
            return deny(f"Confidence score too low ({confidence:.2f} < {rule.min_confidence:.2f})")
        if rule.require_explicit_mention and not explicit_mention:
            return deny("Change requires explicit mention")
        if rule.require_character_agency and not character_agency:
            return deny("Change requires character agency")
        if rule.cooldown_seconds > 0:
            last = self._last_change_at(subject_id, field_path)
            if last is not None and self._clock() - last < timedelta(seconds=rule.cooldown_seconds):
                return deny("Field is in cooldown")

        return PolicyDecision(
            allowed=True,
            reason="Change permitted",
            rule_id=rule.rule_id,
            code=DecisionCode.ALLOWED,
        )

    def _last_change_at(self, subject_id: str, field_path: str) -> datetime | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT MAX(changed_at) AS last FROM field_changes "
                "WHERE subject_id = ? AND field_path = ?",
                (subject_id, field_path),
            ).fetchone()
        finally:
            conn.close()
        return _parse_time(row["last"]) if row and row["last"] else None

    # =========================================================================
    # CHANGE HISTORY
    # =========================================================================

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
        """Record a change and apply it to the subject state. Returns the change id."""
        return await asyncio.to_thread(
            self._append,
            subject_id,
            field_path,
            previous_value,
            new_value,
            confidence,
            source_text,
            source,
            message_id,
        )

    def _append(
        self,
        subject_id: str,
        field_path: str,
        previous_value: Any,
        new_value: Any,
        confidence: float,
        source_text: str,
        source: str,
        message_id: str | None,
    ) -> str:
        change_id = uuid.uuid4().hex
        now = self._clock().isoformat()

        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT state_json FROM subjects WHERE subject_id = ?", (subject_id,)
            ).fetchone()
            if row is None:
                raise SubjectNotFoundError(f"Subject not found: {subject_id}")

            state = json.loads(row["state_json"])
            _set_path(state, field_path, new_value)

            conn.execute(
                "INSERT INTO field_changes "
                "(change_id, subject_id, field_path, previous_value, new_value, confidence, "
                "source_text, source, message_id, changed_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    change_id,
                    subject_id,
                    field_path,
                    json.dumps(previous_value, default=str),
                    json.dumps(new_value, default=str),
                    confidence,
                    source_text,
                    source,
                    message_id,
                    now,
                ),
            )
            conn.execute(
                "UPDATE subjects SET state_json = ?, updated_at = ? WHERE subject_id = ?",
                (json.dumps(state), now, subject_id),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Appended change %s for %s.%s", change_id, subject_id, field_path)
        return change_id

    async def load_recent(self, subject_id: str, limit: int) -> list[FieldChange]:
        """Most recent changes for a subject, newest first."""
        return await asyncio.to_thread(self._load_recent, subject_id, limit)

    def _load_recent(self, subject_id: str, limit: int) -> list[FieldChange]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT field_path, previous_value, new_value, confidence, changed_at, source "
                "FROM field_changes WHERE subject_id = ? "
                "ORDER BY changed_at DESC, rowid DESC LIMIT ?",
                (subject_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return [
            FieldChange(
                field_path=row["field_path"],
                previous_value=json.loads(row["previous_value"]) if row["previous_value"] else None,
                new_value=json.loads(row["new_value"]) if row["new_value"] else None,
                confidence=row["confidence"],
                changed_at=_parse_time(row["changed_at"]),
                source=row["source"],
            )
            for row in rows
        ]

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def ping(self) -> bool:
        """Can the database be opened and queried?"""
        try:
            return await asyncio.to_thread(self._ping)
        except sqlite3.Error as e:
            logger.warning("Store ping failed: %s", e)
            return False

    def _ping(self) -> bool:
        conn = self._connect()
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        finally:
            conn.close()
