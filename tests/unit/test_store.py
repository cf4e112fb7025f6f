"""Unit tests for store module."""
from __future__ import annotations

from pathlib import Path

import pytest

from exceptions import RecordNotFoundError, StoreError
from run_types import AutomationConfig, Issue, Run, RunStatus, TestCaseRecord, TestCaseStep
from store import JsonAutomationConfigStore, JsonIssueTracker, JsonRunStore, JsonTestCaseStore


class TestJsonRunStore:
    """Tests for JsonRunStore."""

    def test_persists_and_reloads(self, temp_dir: Path):
        path = temp_dir / "runs.json"
        store = JsonRunStore(path)
        store.create(Run(id="r1", test_case_id="tc-1"))
        store.update("r1", status=RunStatus.RUNNING)

        reloaded = JsonRunStore(path)
        run = reloaded.get("r1")
        assert run.status is RunStatus.RUNNING
        assert run.updated_at is not None

    def test_duplicate_create_rejected(self):
        store = JsonRunStore()
        store.create(Run(id="r1", test_case_id="tc-1"))
        with pytest.raises(StoreError):
            store.create(Run(id="r1", test_case_id="tc-1"))

    def test_update_unknown_run(self):
        with pytest.raises(RecordNotFoundError):
            JsonRunStore().update("nope", logs="x")

    def test_list_runs_filters_by_test_case(self):
        store = JsonRunStore()
        store.create(Run(id="a", test_case_id="tc-1"))
        store.create(Run(id="b", test_case_id="tc-2"))
        assert [r.id for r in store.list_runs("tc-2")] == ["b"]

    def test_corrupt_file_raises(self, temp_dir: Path):
        path = temp_dir / "runs.json"
        path.write_text("{broken", encoding="utf-8")
        with pytest.raises(StoreError):
            JsonRunStore(path)


class TestJsonTestCaseStore:
    """Tests for JsonTestCaseStore."""

    def test_update_steps(self, temp_dir: Path):
        store = JsonTestCaseStore(temp_dir / "cases.json")
        store.put(TestCaseRecord(id="tc-1", name="Login", steps=[TestCaseStep(step=1, action="open")]))
        store.update_steps("tc-1", [TestCaseStep(step=1, action="open", notes="## Result")])
        assert JsonTestCaseStore(temp_dir / "cases.json").get("tc-1").steps[0].notes == "## Result"

    def test_update_unknown(self):
        with pytest.raises(RecordNotFoundError):
            JsonTestCaseStore().update_steps("x", [])


class TestJsonAutomationConfigStore:
    """Tests for JsonAutomationConfigStore."""

    def test_framework_filter(self):
        store = JsonAutomationConfigStore()
        store.put(AutomationConfig(test_case_id="tc-1", framework="vision-agent", parameters={"yaml": "x"}))
        assert store.get("tc-1").parameters == {"yaml": "x"}
        assert store.get("tc-1", framework="other") is None

    def test_inactive_config_hidden(self):
        store = JsonAutomationConfigStore()
        store.put(AutomationConfig(test_case_id="tc-1", is_active=False))
        assert store.get("tc-1") is None


class TestJsonIssueTracker:
    """Tests for JsonIssueTracker."""

    def test_create_assigns_id(self, temp_dir: Path):
        tracker = JsonIssueTracker(temp_dir / "issues.json")
        issue_id = tracker.create(Issue(title="t", description="d", test_case_id="tc-1"))
        reloaded = JsonIssueTracker(temp_dir / "issues.json")
        assert reloaded.get(issue_id).title == "t"
        assert [i.id for i in reloaded.list_issues("tc-1")] == [issue_id]
