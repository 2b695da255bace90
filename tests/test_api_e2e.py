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
"""
E2E tests for the Traitguard API.

Tests the full request -> service -> store -> response cycle via FastAPI TestClient.
"""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeGenerator
from traitguard.core.config import TraitguardSettings
from traitguard.core.logging import TraitguardLogger
from traitguard.store.rules import default_rules
from traitguard.store.sqlite_store import SQLiteTraitStore
from traitguard.validation.correction import ResponseCorrectionOrchestrator
from traitguard.validation.extraction import KeyValueTraitExtractor, UpdateExtractionAdapter
from traitguard.validation.protection import FieldProtectionEvaluator
from traitguard.validation.service import ValidatedGenerationService


@pytest.fixture()
def wired(tmp_path):
    """Install a service backed by a temp SQLite store and a canned generator."""
    from traitguard.api import _shared

    store = SQLiteTraitStore(str(tmp_path / "traitguard.db"))
    asyncio.run(store.add_rules(default_rules()))

    generator = FakeGenerator([])
    evaluator = FieldProtectionEvaluator(oracle=store, history=store)
    orchestrator = ResponseCorrectionOrchestrator(
        UpdateExtractionAdapter(KeyValueTraitExtractor()), evaluator
    )
    service = ValidatedGenerationService(
        generator,
        evaluator,
        orchestrator,
        TraitguardSettings(db_path=str(tmp_path / "traitguard.db")),
        log=TraitguardLogger(log_dir=tmp_path / "logs"),
    )
    _shared.set_service(service, store)
    yield generator
    _shared.set_service(None)


@pytest.fixture()
def client(wired):
    from traitguard.api.server import create_app

    return TestClient(create_app())


def _body(**overrides):
    body = {
        "conversation_id": "conv-1",
        "user_message": "Tell me about your day.",
        "system_prompt": "You are Emily.",
        "subject_id": "emily",
    }
    body.update(overrides)
    return body


# ═══════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_healthy(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["llm_available"] is True
        assert data["database_connected"] is True
        assert data["version"] == "1.2.0"
        assert data["logging"]["file_count"] >= 1

    def test_degraded_llm_still_reports(self, client, wired):
        wired.reachable = False
        data = client.get("/health").json()
        assert data["llm_available"] is False
        assert data["validation_ready"] is True

    def test_ready(self, client):
        assert client.get("/ready").json()["status"] == "ready"


# ═══════════════════════════════════════════════════════════════════════
# Subjects
# ═══════════════════════════════════════════════════════════════════════


class TestSubjects:
    def test_put_then_get(self, client):
        state = {"appearance": {"eyes": {"color": "green"}}}
        resp = client.put("/api/subjects/emily", json={"state": state})
        assert resp.status_code == 200
        assert resp.json()["saved"] is True

        data = client.get("/api/subjects/emily").json()
        assert data["state"]["appearance"] == state["appearance"]
        assert "updated_at" in data["state"]

    def test_unknown_subject_404(self, client):
        resp = client.get("/api/subjects/ghost")
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════
# POST /api/generate
# ═══════════════════════════════════════════════════════════════════════


class TestGenerate:
    def test_blocked_change_corrected(self, client, wired):
        client.put("/api/subjects/emily", json={"state": {"appearance": {"eyes": {"color": "green"}}}})
        wired.replies.extend(["eyes: red", "She hums quietly."])

        resp = client.post("/api/generate", json=_body())

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["content"] == "She hums quietly."
        assert data["metadata"]["retries_used"] == 1
        assert data["validation_result"]["blocked_updates"][0]["field_path"] == "appearance.eyes.color"

        stats = client.get("/api/validation/stats").json()
        assert stats["total_validations"] == 1
        assert stats["retries"] == 1
        assert stats["blocked_updates"] == 1

    def test_generation_failure_reported(self, client, wired):
        wired.replies.append(RuntimeError("connection refused"))

        data = client.post("/api/generate", json=_body(subject_id=None)).json()

        assert data["success"] is False
        assert "connection refused" in data["error"]

    def test_blank_message_rejected(self, client):
        resp = client.post("/api/generate", json=_body(user_message="   "))
        assert resp.status_code == 400

    def test_missing_field_rejected(self, client):
        resp = client.post("/api/generate", json={"user_message": "hi"})
        assert resp.status_code == 422

    def test_message_history_forwarded(self, client, wired):
        wired.replies.append("Hello again.")
        history = [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello!"}]

        client.post("/api/generate", json=_body(subject_id=None, message_history=history))

        messages, _ = wired.calls[0]
        assert messages[1:3] == history


# ═══════════════════════════════════════════════════════════════════════
# Lazy service wiring
# ═══════════════════════════════════════════════════════════════════════


class TestServiceSingleton:
    @pytest.mark.asyncio
    async def test_concurrent_first_requests_build_once(self, monkeypatch):
        from traitguard.api import _shared

        built = []

        async def fake_build(settings):
            built.append(settings)
            await asyncio.sleep(0.01)
            return object(), object()

        _shared.set_service(None)
        monkeypatch.setattr(_shared, "build_service", fake_build)
        monkeypatch.setattr(_shared, "load_settings", lambda: TraitguardSettings())
        try:
            first, second = await asyncio.gather(_shared.get_service(), _shared.get_service())
        finally:
            _shared.set_service(None)

        assert len(built) == 1
        assert first is second
