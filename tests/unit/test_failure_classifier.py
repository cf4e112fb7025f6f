"""Unit tests for failure_classifier module."""
from __future__ import annotations

import pytest

from failure_classifier import (
    CATALOG,
    FailureCategory,
    categorize,
    classify,
    format_failure_message,
)


class TestCategorize:
    """Tests for category selection."""

    @pytest.mark.parametrize(
        "error_text,expected",
        [
            ("ETIMEDOUT connecting to host", FailureCategory.NETWORK),
            ("Navigation timeout of 60000 ms exceeded", FailureCategory.NETWORK),
            ("net::ERR_CONNECTION_REFUSED", FailureCategory.NETWORK),
            ("unexpected token at line 4", FailureCategory.CONFIG),
            ("Failed to parse plan YAML", FailureCategory.CONFIG),
            ("Element matching selector #submit not found", FailureCategory.ELEMENT_LOCATOR),
            ("403 Forbidden", FailureCategory.PERMISSION),
            ("Access denied for user", FailureCategory.PERMISSION),
            ("agent crashed", FailureCategory.GENERIC),
            ("", FailureCategory.GENERIC),
        ],
    )
    def test_categories(self, error_text, expected):
        assert categorize(error_text) is expected

    def test_matching_is_case_insensitive(self):
        assert categorize("NETWORK unreachable") is FailureCategory.NETWORK

    def test_priority_order(self):
        # Mentions both a timeout and a selector; network is checked first.
        assert categorize("timeout waiting for selector .btn") is FailureCategory.NETWORK
        assert categorize("yaml config references missing element") is FailureCategory.CONFIG


class TestClassify:
    """Tests for classify function."""

    def test_network_hides_technical_detail(self):
        result = classify("ETIMEDOUT connecting to host")
        assert result.category is FailureCategory.NETWORK
        assert result.show_technical_detail is False

    def test_only_generic_shows_technical_detail(self):
        for category in FailureCategory:
            sample = {
                FailureCategory.NETWORK: "network down",
                FailureCategory.CONFIG: "bad config",
                FailureCategory.ELEMENT_LOCATOR: "element missing",
                FailureCategory.PERMISSION: "permission denied",
                FailureCategory.GENERIC: "boom",
            }[category]
            result = classify(sample)
            assert result.category is category
            assert result.show_technical_detail is (category is FailureCategory.GENERIC)

    def test_remediation_counts(self):
        for category in FailureCategory:
            _, remediations = CATALOG["en"][category]
            assert 2 <= len(remediations) <= 4

    @pytest.mark.parametrize("payload", [None, "", "   ", "\x00", "💥"])
    def test_total_over_odd_input(self, payload):
        assert classify(payload).category in set(FailureCategory)

    def test_locale_selection(self):
        assert classify("network down", locale="zh").remediations[0].title == "检查网络连接"
        assert classify("network down", locale="ja-JP").remediations[0].title == "ネットワーク接続を確認"

    def test_unknown_locale_falls_back_to_english(self):
        assert classify("network down", locale="fr").remediations[0].title == "Check Network Connection"

    def test_to_dict(self):
        data = classify("boom").to_dict()
        assert data["category"] == "generic"
        assert data["showTechnicalDetail"] is True
        assert data["remediations"][0]["title"] == "Re-run Test"


class TestFormatFailureMessage:
    """Tests for the user-facing failure message."""

    def test_network_message_hides_raw_error(self):
        error = "ETIMEDOUT connecting to host at 10.0.0.1:443"
        message = format_failure_message(classify(error), error, test_case_title="Login")
        assert "**📋 Test Case**: Login" in message
        assert "10.0.0.1" not in message
        assert "<details>" not in message
        assert "1. **Check Network Connection**" in message

    def test_generic_message_collapses_details(self):
        message = format_failure_message(classify("agent crashed"), "agent crashed")
        assert "<details>" in message
        assert "**Error Details**: agent crashed" in message

    def test_json_error_reduced_to_message(self):
        error = 'Request failed: {"error": "quota exhausted", "code": 42}'
        message = format_failure_message(classify(error), error)
        assert "quota exhausted" in message
        assert '"code"' not in message

    def test_long_error_truncated(self):
        error = "x" * 500
        message = format_failure_message(classify(error), error)
        assert "x" * 200 in message
        assert "x" * 201 not in message
