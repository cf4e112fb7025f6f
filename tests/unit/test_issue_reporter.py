"""Unit tests for issue_reporter module."""
from __future__ import annotations

from unittest.mock import MagicMock

from issue_reporter import IssueAutoReporter, build_issue_description
from run_types import TestCaseRecord, TestCaseStep
from store import JsonIssueTracker


class TestBuildIssueDescription:
    """Tests for build_issue_description."""

    def test_sections_in_order(self, sample_test_case):
        description = build_issue_description(
            "Login and logout",
            "vision-agent",
            "staging",
            sample_test_case.steps,
            "agent crashed",
            "/report/r.html",
        )
        headings = [line for line in description.splitlines() if line.startswith("#")]
        assert headings == [
            "# Issue Description",
            "## Test Case",
            "## Framework",
            "## Environment",
            "## Test Steps",
            "## Error Details",
            "## Test Report",
        ]
        assert "1. Log in as demo\n   Expected: Dashboard is shown" in description
        assert "2. Log out" in description
        assert description.rstrip().endswith("/report/r.html")

    def test_optional_sections_omitted(self):
        description = build_issue_description("T", "vision-agent", "test", [], None)
        assert "## Test Steps" not in description
        assert "## Test Report" not in description
        assert "Unknown error" in description


class TestIssueAutoReporter:
    """Tests for IssueAutoReporter."""

    def test_files_high_severity_issue(self, sample_test_case, sample_plan):
        tracker = JsonIssueTracker()
        reporter = IssueAutoReporter(tracker, framework="vision-agent")

        issue_id = reporter.file_issue(
            sample_test_case,
            sample_plan,
            None,
            "selector not found",
            environment="staging",
            reporter="qa@example.com",
        )

        issue = tracker.get(issue_id)
        assert issue.title == "Automation Test Failed: Login and logout"
        assert issue.severity == "high"
        assert issue.status == "open"
        assert issue.category == "automation"
        assert issue.tags == ["automation", "test-failure", "vision-agent"]
        assert issue.reporter == "qa@example.com"
        assert issue.environment == "staging"
        assert issue.url == "https://x.test/login"
        assert "Log in as demo" in issue.description

    def test_explicit_steps_override_record(self, sample_plan):
        tracker = JsonIssueTracker()
        case = TestCaseRecord(id="tc-2", name="Search")
        steps = [TestCaseStep(step=1, action="Search for shoes")]

        issue_id = IssueAutoReporter(tracker).file_issue(case, sample_plan, steps, "boom")

        assert "1. Search for shoes" in tracker.get(issue_id).description

    def test_tracker_failure_returns_none(self, sample_test_case):
        tracker = MagicMock()
        tracker.create.side_effect = RuntimeError("tracker down")

        assert IssueAutoReporter(tracker).file_issue(sample_test_case, None, None, "boom") is None

    def test_framework_override(self, sample_test_case):
        tracker = JsonIssueTracker()
        issue_id = IssueAutoReporter(tracker).file_issue(
            sample_test_case, None, None, "boom", framework="playwright"
        )
        issue = tracker.get(issue_id)
        assert issue.tags[-1] == "playwright"
        assert issue.url is None
