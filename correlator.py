"""Attach screenshot evidence from an execution log to test-case steps."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from exceptions import CorrelationMismatch
from plan_types import ExecutionLog, ExecutionRecord, Plan
from run_types import TestCaseStep

SCREENSHOT_START = "---SCREENSHOT-START---"
SCREENSHOT_END = "---SCREENSHOT-END---"
RESULT_HEADING = "## Result"
INVALID_SCREENSHOT_NOTES = f"{RESULT_HEADING}\n\n❌ Invalid screenshot data"
DATA_URL_PREFIX = "data:image/png;base64,"
# Payloads longer than this render slowly in most Markdown viewers.
LARGE_PAYLOAD_WARNING = 500_000

_BASE64_HEAD = re.compile(r"^[A-Za-z0-9+/=]+$")


def is_valid_screenshot(payload: str) -> bool:
    """Plausible image data: a data URL, or a long base64-alphabet string."""
    if payload.startswith("data:image"):
        return True
    return len(payload) > 100 and bool(_BASE64_HEAD.match(payload[:100]))


def find_last_screenshot(record: ExecutionRecord) -> Optional[str]:
    """Scan the record's actions from the end for the newest screenshot."""
    for action in reversed(record.tasks):
        for entry in reversed(action.recorder):
            if entry.type == "screenshot" and isinstance(entry.screenshot, str) and entry.screenshot:
                return entry.screenshot
    return None


def screenshot_notes(payload: str) -> str:
    data_url = payload if payload.startswith("data:") else f"{DATA_URL_PREFIX}{payload}"
    return f"{RESULT_HEADING}\n\n{SCREENSHOT_START}\n{data_url}\n{SCREENSHOT_END}"


def missing_screenshot_notes(record: ExecutionRecord, assertion: str) -> str:
    return (
        f"{RESULT_HEADING}\n\n❌ No screenshot found\n\n"
        f"**Debug info**:\n"
        f"- Matched execution: {record.name or 'none'}\n"
        f"- Recorded actions: {len(record.tasks)}\n"
        f"- Assertion: {assertion}"
    )


def extract_screenshot(notes: str) -> Optional[str]:
    """Return the data URL wrapped in sentinel markers, if any."""
    start = notes.find(SCREENSHOT_START)
    end = notes.find(SCREENSHOT_END)
    if start < 0 or end < start:
        return None
    return notes[start + len(SCREENSHOT_START):end].strip() or None


@dataclass
class CorrelationResult:
    """Updated steps plus what happened to each one."""

    steps: List[TestCaseStep]
    matched: Dict[int, str]
    mismatches: List[CorrelationMismatch]

    @property
    def updated_count(self) -> int:
        return len(self.matched)


class ResultCorrelator:
    """Match plan assertions to execution records by exact string equality."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("correlator")

    def build_mapping(self, plan: Plan, log: ExecutionLog) -> Dict[int, ExecutionRecord]:
        """Map each task index to the first record holding its assertion."""
        mapping: Dict[int, ExecutionRecord] = {}
        for index, task in enumerate(plan.tasks):
            assertion = task.assertion
            if not assertion:
                continue
            record = next(
                (
                    execution
                    for execution in log.executions
                    if any(action.assertion == assertion for action in execution.tasks)
                ),
                None,
            )
            if record is not None:
                mapping[index] = record
        return mapping

    def correlate(
        self,
        plan: Plan,
        log: ExecutionLog,
        steps: Sequence[TestCaseStep],
    ) -> CorrelationResult:
        """
        Rewrite the notes of steps whose task assertion was found in the log.

        Step i corresponds to task i. Steps without a mapped record keep their
        notes. The input steps are not mutated.
        """
        mapping = self.build_mapping(plan, log)
        updated: List[TestCaseStep] = []
        matched: Dict[int, str] = {}
        mismatches: List[CorrelationMismatch] = []

        for index, step in enumerate(steps):
            record = mapping.get(index)
            if record is None:
                task = plan.tasks[index] if index < len(plan.tasks) else None
                if task is not None and task.assertion:
                    mismatches.append(
                        CorrelationMismatch(
                            f"No execution record matched step {index + 1}",
                            task_index=index,
                            assertion=task.assertion,
                        )
                    )
                updated.append(replace(step))
                continue

            assertion = plan.tasks[index].assertion or ""
            screenshot = find_last_screenshot(record)
            if screenshot is None:
                self.logger.warning(f"Step {index + 1}: matched '{record.name}' but it has no screenshot")
                notes = missing_screenshot_notes(record, assertion)
            elif not is_valid_screenshot(screenshot):
                self.logger.warning(f"Step {index + 1}: screenshot data is not a valid image payload")
                notes = INVALID_SCREENSHOT_NOTES
            else:
                notes = screenshot_notes(screenshot)
                if len(notes) > LARGE_PAYLOAD_WARNING:
                    self.logger.warning(f"Step {index + 1}: screenshot payload is {len(notes)} characters")
            matched[index] = record.name
            updated.append(replace(step, notes=notes))

        for mismatch in mismatches:
            self.logger.info(str(mismatch))
        self.logger.info(f"Correlated {len(matched)}/{len(steps)} steps against {len(log.executions)} executions")
        return CorrelationResult(steps=updated, matched=matched, mismatches=mismatches)


def load_execution_log(path: Path, logger: Optional[logging.Logger] = None) -> Optional[ExecutionLog]:
    """Read a log snapshot from disk; None when missing or unreadable."""
    logger = logger or logging.getLogger("correlator")
    if not path.exists():
        logger.warning(f"Execution log not found: {path}")
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(f"Failed to read execution log {path}: {exc}")
        return None
    return ExecutionLog.from_dict(data)
