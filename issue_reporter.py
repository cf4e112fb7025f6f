"""Files a defect record when an automation run fails."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from plan_types import Plan
from run_types import Issue, TestCaseRecord, TestCaseStep
from store import IssueTracker


def build_issue_description(
    test_case_name: str,
    framework: str,
    environment: str,
    steps: Sequence[TestCaseStep],
    error: Optional[str],
    report_url: Optional[str] = None,
) -> str:
    lines: List[str] = [
        "# Issue Description",
        "Automation Test Failed",
        "",
        "## Test Case",
        test_case_name,
        "",
        "## Framework",
        framework,
        "",
        "## Environment",
        environment,
        "",
    ]
    if steps:
        lines.append("## Test Steps")
        for index, step in enumerate(steps, 1):
            lines.append(f"{index}. {step.action}")
            if step.expected:
                lines.append(f"   Expected: {step.expected}")
        lines.append("")
    lines += ["## Error Details", error or "Unknown error", ""]
    if report_url:
        lines += ["## Test Report", report_url]
    return "\n".join(lines).rstrip("\n") + "\n"


class IssueAutoReporter:
    """Creates exactly one high-severity issue per failed run.

    Never raises: a tracker failure is logged and ``file_issue`` returns None,
    so it cannot mask the test failure it reports.
    """

    def __init__(
        self,
        tracker: IssueTracker,
        framework: str = "vision-agent",
        logger: Optional[logging.Logger] = None,
    ):
        self.tracker = tracker
        self.framework = framework
        self.logger = logger or logging.getLogger("issue_reporter")

    def file_issue(
        self,
        test_case: TestCaseRecord,
        plan: Optional[Plan],
        steps: Optional[Sequence[TestCaseStep]],
        error: Optional[str],
        *,
        environment: str = "test",
        report_url: Optional[str] = None,
        reporter: Optional[str] = None,
        framework: Optional[str] = None,
    ) -> Optional[str]:
        framework = framework or self.framework
        try:
            issue = Issue(
                title=f"Automation Test Failed: {test_case.name or test_case.id}",
                description=build_issue_description(
                    test_case.name or test_case.id,
                    framework,
                    environment,
                    list(steps if steps is not None else test_case.steps),
                    error,
                    report_url,
                ),
                test_case_id=test_case.id,
                severity="high",
                status="open",
                category="automation",
                tags=["automation", "test-failure", framework],
                reporter=reporter or "system",
                environment=environment,
                url=plan.target.url if plan is not None and plan.target.url else None,
            )
            issue_id = self.tracker.create(issue)
        except Exception as exc:
            self.logger.error(f"Failed to file issue for {test_case.id}: {exc}")
            return None
        self.logger.info(f"Filed issue {issue_id}: {issue.title}")
        return issue_id
