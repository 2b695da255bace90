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
"""Tests for per adventure type formatting profiles."""

import pytest

from traitguard.validation.formatting import (
    FORMAT_PROFILES,
    format_response,
    get_context_window_size,
    get_format_profile,
    get_stop_sequences,
)


class TestProfiles:
    def test_known_profiles(self):
        assert set(FORMAT_PROFILES) == {"romance", "action", "general"}
        assert get_format_profile("romance").max_tokens == 200
        assert get_format_profile("general").max_tokens == 300

    @pytest.mark.parametrize("adventure_type", ["mystery", "", None])
    def test_unknown_falls_back_to_general(self, adventure_type):
        assert get_format_profile(adventure_type).name == "general"

    def test_stop_sequences_with_character(self):
        assert get_stop_sequences("romance", "Emily") == [
            "[USER:",
            "User:",
            "\nUser",
            "\n\n\n",
            "Emily:",
        ]

    def test_stop_sequences_without_character(self):
        assert get_stop_sequences("general") == ["[USER:", "User:", "\nUser"]

    def test_stop_sequences_are_copies(self):
        get_stop_sequences("general").append("junk")
        assert "junk" not in get_stop_sequences("general")

    @pytest.mark.parametrize(
        "adventure_type,custom,expected",
        [
            ("romance", None, 18),
            ("romance", 100, 20),
            ("romance", 1, 15),
            ("action", None, 10),
            ("general", 12, 12),
        ],
    )
    def test_context_window(self, adventure_type, custom, expected):
        assert get_context_window_size(adventure_type, custom) == expected


class TestFormatResponse:
    def test_caps_paragraphs(self):
        assert format_response("a\n\nb\n\nc\n\nd", "general") == "a\n\nb\n\nc"

    def test_wraps_actions_and_appends_marker(self):
        result = format_response("She smiled at the door.", "romance", pronoun="She")
        assert result == "*She smiled* at the door.\n\n*She waits for your response.*"

    def test_marker_defaults_to_they(self):
        result = format_response("The wind howls.", "action")
        assert result.endswith("*They waits for your next move.*")

    def test_existing_asterisks_untouched(self):
        result = format_response("*She smiled softly.* She waits for you.", "romance")
        assert result == "*She smiled softly.* She waits for you."

    def test_general_has_no_marker_or_asterisks(self):
        assert format_response("She smiled.", "general") == "She smiled."

    def test_strips_lines_spoken_for_user(self):
        assert format_response("You say hello.\nShe laughs.", "general") == "She laughs."

    def test_collapses_blank_lines(self):
        assert format_response("a\n\n\n\nb   ", "general") == "a\n\nb"

    def test_deterministic(self):
        text = "She smiled.\n\nYou nod.\n\nHe turned away."
        assert format_response(text, "romance") == format_response(text, "romance")
