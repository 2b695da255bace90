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
"""Tests for settings resolution: defaults, settings.json, environment."""

import json

from traitguard.core.config import TraitguardSettings, load_settings


class TestLoadSettings:
    def test_defaults_when_nothing_configured(self, tmp_path):
        settings = load_settings(tmp_path / "missing.json", environ={})
        assert settings == TraitguardSettings()
        assert settings.temperature == 0.7
        assert settings.retry_temperature == 0.6
        assert settings.max_retries == 2
        assert settings.validation_timeout_ms == 8000
        assert settings.recent_change_limit == 50

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"model": "mistral", "max_retries": 4, "unknown_key": 1}))

        settings = load_settings(path, environ={})

        assert settings.model == "mistral"
        assert settings.max_retries == 4

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"model": "mistral", "temperature": 0.9}))

        settings = load_settings(
            path,
            environ={
                "TRAITGUARD_MODEL": "llama3.1:70b",
                "TRAITGUARD_VALIDATION_TIMEOUT_MS": "12000",
                "TRAITGUARD_RULES_PATH": "/etc/traitguard/rules.yaml",
            },
        )

        assert settings.model == "llama3.1:70b"
        assert settings.temperature == 0.9
        assert settings.validation_timeout_ms == 12000
        assert settings.rules_path == "/etc/traitguard/rules.yaml"

    def test_malformed_file_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        assert load_settings(path, environ={}) == TraitguardSettings()

    def test_non_object_file_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2, 3]")
        assert load_settings(path, environ={}) == TraitguardSettings()

    def test_bad_value_keeps_default(self, tmp_path):
        settings = load_settings(tmp_path / "missing.json", environ={"TRAITGUARD_MAX_RETRIES": "lots"})
        assert settings.max_retries == 2

    def test_to_dict(self):
        assert TraitguardSettings().to_dict()["model"] == "llama3.1"
