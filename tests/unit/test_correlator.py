"""Unit tests for correlator module."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from correlator import (
    INVALID_SCREENSHOT_NOTES,
    SCREENSHOT_END,
    SCREENSHOT_START,
    ResultCorrelator,
    extract_screenshot,
    find_last_screenshot,
    is_valid_screenshot,
    load_execution_log,
)
from plan_codec import parse_plan
from plan_types import ActionRecord, ExecutionLog, ExecutionRecord, FlowStep, Plan, ScreenshotRecord, Task
from run_types import TestCaseStep


LOGIN_PLAN = "target:\n  url: https://x.test\ntasks:\n  - name: Login\n    flow:\n      - aiAssert: user is logged in\n"
LONG_BASE64 = "iVBORw0KGgo" + "A" * 200


def _log(assertion: str, *screenshots: str, name: str = "Login") -> ExecutionLog:
    return ExecutionLog(
        executions=[
            ExecutionRecord(
                name=name,
                tasks=[
                    ActionRecord(
                        type="Insight",
                        sub_type="Assert",
                        param={"assertion": assertion},
                        recorder=[ScreenshotRecord(screenshot=s) for s in screenshots],
                    )
                ],
            )
        ]
    )


@pytest.fixture
def correlator() -> ResultCorrelator:
    return ResultCorrelator()


class TestScreenshotHelpers:
    """Tests for screenshot validation and lookup."""

    def test_data_url_is_valid(self):
        assert is_valid_screenshot("data:image/png;base64,AAAA")

    def test_long_base64_is_valid(self):
        assert is_valid_screenshot(LONG_BASE64)

    def test_short_bare_base64_is_invalid(self):
        assert not is_valid_screenshot("AAAA")

    def test_non_base64_is_invalid(self):
        assert not is_valid_screenshot("<html>" + "x" * 200)

    def test_last_screenshot_found_in_reverse(self):
        record = ExecutionRecord(
            name="r",
            tasks=[
                ActionRecord(type="Action", recorder=[ScreenshotRecord(screenshot="first")]),
                ActionRecord(
                    type="Action",
                    recorder=[ScreenshotRecord(screenshot="second"), ScreenshotRecord(screenshot="third")],
                ),
                ActionRecord(type="Action", recorder=[]),
            ],
        )
        assert find_last_screenshot(record) == "third"

    def test_non_screenshot_entries_skipped(self):
        record = ExecutionRecord(
            name="r",
            tasks=[ActionRecord(type="Action", recorder=[ScreenshotRecord(screenshot="x", type="video")])],
        )
        assert find_last_screenshot(record) is None

    def test_extract_screenshot(self):
        notes = f"## Result\n\n{SCREENSHOT_START}\ndata:image/png;base64,AAAA\n{SCREENSHOT_END}"
        assert extract_screenshot(notes) == "data:image/png;base64,AAAA"
        assert extract_screenshot("plain notes") is None


class TestCorrelate:
    """Tests for ResultCorrelator.correlate."""

    def test_matched_step_gets_sentinel_screenshot(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        steps = [TestCaseStep(step=1, action="Login", notes="old"), TestCaseStep(step=2, action="Other", notes="keep")]
        result = correlator.correlate(plan, _log("user is logged in", "data:image/png;base64,AAAA"), steps)

        notes = result.steps[0].notes
        assert notes.startswith("## Result")
        assert f"{SCREENSHOT_START}\ndata:image/png;base64,AAAA\n{SCREENSHOT_END}" in notes
        assert result.steps[1].notes == "keep"
        assert result.matched == {0: "Login"}

    def test_case_difference_does_not_match(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        steps = [TestCaseStep(step=1, action="Login", notes="old")]
        result = correlator.correlate(plan, _log("User is logged in", "data:image/png;base64,AAAA"), steps)
        assert result.steps[0].notes == "old"
        assert result.matched == {}
        assert result.mismatches[0].task_index == 0

    def test_whitespace_difference_does_not_match(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        steps = [TestCaseStep(step=1, action="Login", notes="old")]
        result = correlator.correlate(plan, _log("user is logged in ", "data:image/png;base64,AAAA"), steps)
        assert result.steps[0].notes == "old"

    def test_bare_base64_gets_data_url_prefix(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        result = correlator.correlate(plan, _log("user is logged in", LONG_BASE64), [TestCaseStep(step=1, action="a")])
        assert f"data:image/png;base64,{LONG_BASE64}" in result.steps[0].notes

    def test_invalid_screenshot_rewrites_notes(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        result = correlator.correlate(plan, _log("user is logged in", "garbage"), [TestCaseStep(step=1, action="a")])
        assert result.steps[0].notes == INVALID_SCREENSHOT_NOTES

    def test_missing_screenshot_writes_diagnostic(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        result = correlator.correlate(plan, _log("user is logged in"), [TestCaseStep(step=1, action="a", notes="x")])
        assert "No screenshot found" in result.steps[0].notes
        assert "Assertion: user is logged in" in result.steps[0].notes

    def test_first_matching_record_wins(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        log = ExecutionLog(
            executions=_log("user is logged in", "data:image/png;base64,FIRST", name="one").executions
            + _log("user is logged in", "data:image/png;base64,SECOND", name="two").executions
        )
        result = correlator.correlate(plan, log, [TestCaseStep(step=1, action="a")])
        assert "FIRST" in result.steps[0].notes
        assert result.matched == {0: "one"}

    def test_only_first_assert_per_task_is_used(self, correlator):
        plan = parse_plan(
            "tasks:\n  - name: T\n    flow:\n      - aiAssert: first check\n      - aiAssert: second check\n"
        )
        result = correlator.correlate(
            plan, _log("second check", "data:image/png;base64,AAAA"), [TestCaseStep(step=1, action="a", notes="n")]
        )
        assert result.steps[0].notes == "n"

    def test_task_without_assert_is_skipped(self, correlator):
        plan = parse_plan("tasks:\n  - name: T\n    flow:\n      - ai: click\n")
        result = correlator.correlate(plan, _log("click", "data:image/png;base64,AAAA"), [TestCaseStep(step=1, action="a", notes="n")])
        assert result.steps[0].notes == "n"
        assert result.mismatches == []

    def test_empty_assertion_is_skipped(self, correlator):
        plan = Plan(tasks=[Task(name="T", flow=[FlowStep(type="aiAssert", value="")])])
        result = correlator.correlate(plan, _log("", "data:image/png;base64,AAAA"), [TestCaseStep(step=1, action="a", notes="n")])
        assert result.matched == {}
        assert result.steps[0].notes == "n"
        assert result.mismatches == []

    def test_more_steps_than_tasks(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        steps = [TestCaseStep(step=i, action=f"s{i}", notes=f"n{i}") for i in range(1, 4)]
        result = correlator.correlate(plan, _log("user is logged in", "data:image/png;base64,AAAA"), steps)
        assert [s.notes for s in result.steps[1:]] == ["n2", "n3"]

    def test_is_deterministic_and_idempotent(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        log = _log("user is logged in", "data:image/png;base64,AAAA")
        steps = [TestCaseStep(step=1, action="a", notes="old")]
        first = correlator.correlate(plan, log, steps)
        second = correlator.correlate(plan, log, first.steps)
        assert first.steps == second.steps

    def test_inputs_are_not_mutated(self, correlator):
        plan = parse_plan(LOGIN_PLAN)
        steps = [TestCaseStep(step=1, action="a", notes="old")]
        correlator.correlate(plan, _log("user is logged in", "data:image/png;base64,AAAA"), steps)
        assert steps[0].notes == "old"


class TestLoadExecutionLog:
    """Tests for reading log snapshots."""

    def test_reads_snapshot(self, temp_dir: Path):
        path = temp_dir / "log.json"
        path.write_text(json.dumps(_log("ok", "data:image/png;base64,AAAA").to_dict()), encoding="utf-8")
        log = load_execution_log(path)
        assert log.executions[0].tasks[0].assertion == "ok"
        assert log.executions[0].tasks[0].recorder[0].screenshot == "data:image/png;base64,AAAA"

    def test_missing_file_returns_none(self, temp_dir: Path):
        assert load_execution_log(temp_dir / "nope.json") is None

    def test_malformed_file_returns_none(self, temp_dir: Path):
        path = temp_dir / "log.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_execution_log(path) is None

    def test_unexpected_shapes_are_skipped(self):
        log = ExecutionLog.from_dict({"executions": ["x", {"name": "ok", "tasks": [1, {"param": "bad"}]}]})
        assert len(log.executions) == 1
        assert log.executions[0].tasks[0].assertion is None
