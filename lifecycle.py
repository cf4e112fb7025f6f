"""Run record lifecycle: pending -> running -> passed | failed."""
from __future__ import annotations

import logging
import re
import uuid
from typing import Dict, FrozenSet, Optional

from exceptions import RunStateError
from run_types import Run, RunStatus
from store import RunStore

ALLOWED_TRANSITIONS: Dict[RunStatus, FrozenSet[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: frozenset({RunStatus.PASSED, RunStatus.FAILED}),
    RunStatus.PASSED: frozenset(),
    RunStatus.FAILED: frozenset(),
}

REPORT_URL_PATTERN = re.compile(r"^/report/[A-Za-z0-9._-]+\.html$")


def build_success_logs(framework: str, environment: str, report_url: Optional[str]) -> str:
    return (
        f"Test execution successful using {framework} framework in {environment} environment, "
        f"report URL: {report_url or 'not generated'}"
    )


def build_failure_logs(framework: str, environment: str, error: Optional[str], report_url: Optional[str]) -> str:
    logs = f"Test execution failed using {framework} framework in {environment} environment"
    if error:
        logs += f". Error details: {error}"
    if report_url:
        logs += f", report URL: {report_url}"
    elif not error:
        logs += ", no report generated"
    return logs


def is_public_report_url(report_url: Optional[str]) -> bool:
    return bool(report_url) and bool(REPORT_URL_PATTERN.match(report_url))


class RunLifecycleManager:
    """Creates and finalizes Run records through a RunStore."""

    def __init__(self, store: RunStore, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger("lifecycle")

    def create(self, test_case_id: str, environment: str, executor: str) -> Run:
        run = Run(
            id=uuid.uuid4().hex,
            test_case_id=test_case_id,
            status=RunStatus.PENDING,
            environment=environment,
            executor=executor,
        )
        self.store.create(run)
        self.logger.info(f"Run {run.id} created for test case {test_case_id}")
        return run

    def _transition(self, run_id: str, target: RunStatus, **fields) -> Run:
        current = self.store.get(run_id)
        if current is None:
            raise RunStateError(f"Unknown run: {run_id}", requested=target.value)
        if target not in ALLOWED_TRANSITIONS[current.status]:
            raise RunStateError(
                f"Illegal run transition {current.status.value} -> {target.value}",
                current=current.status.value,
                requested=target.value,
            )
        updated = self.store.update(run_id, status=target, **fields)
        self.logger.info(f"Run {run_id}: {current.status.value} -> {target.value}")
        return updated

    def mark_running(self, run_id: str) -> Run:
        return self._transition(run_id, RunStatus.RUNNING)

    def finalize(
        self,
        run_id: str,
        passed: bool,
        duration: float,
        logs: str,
        report_url: Optional[str] = None,
    ) -> Run:
        """Move a running run to its terminal state. Allowed exactly once."""
        if report_url and not is_public_report_url(report_url):
            self.logger.warning(f"Run {run_id}: dropping report URL outside /report/: {report_url}")
            report_url = None
        return self._transition(
            run_id,
            RunStatus.PASSED if passed else RunStatus.FAILED,
            duration=max(0, round(duration)),
            logs=logs,
            report_url=report_url or None,
        )
