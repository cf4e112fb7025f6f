"""Typed objects for test runs, test-case steps and run results."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from plan_types import ExecutionLog


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    """Persisted status of a test run."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.PASSED, RunStatus.FAILED)


@dataclass
class Run:
    """Lifecycle record of one execution attempt."""

    id: str
    test_case_id: str
    status: RunStatus = RunStatus.PENDING
    duration: int = 0
    environment: str = "test"
    executor: str = "system"
    logs: str = ""
    report_url: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "testCaseId": self.test_case_id,
            "status": self.status.value,
            "duration": self.duration,
            "environment": self.environment,
            "executor": self.executor,
            "logs": self.logs,
            "reportUrl": self.report_url,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Run":
        updated_at = data.get("updatedAt")
        return cls(
            id=data["id"],
            test_case_id=data["testCaseId"],
            status=RunStatus(data.get("status", "pending")),
            duration=int(data.get("duration") or 0),
            environment=data.get("environment") or "test",
            executor=data.get("executor") or "system",
            logs=data.get("logs") or "",
            report_url=data.get("reportUrl"),
            created_at=datetime.fromisoformat(data["createdAt"]) if data.get("createdAt") else utc_now(),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@dataclass
class TestCaseStep:
    """Externally owned step of a test case; only `notes` is rewritten here."""

    __test__ = False

    step: int
    action: str
    expected: str = ""
    type: str = "manual"
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestCaseStep":
        return cls(
            step=int(data["step"]),
            action=data.get("action", ""),
            expected=data.get("expected", ""),
            type=data.get("type", "manual"),
            notes=data.get("notes", ""),
        )


@dataclass
class TestCaseRecord:
    """Test case as the engine sees it: a name plus its ordered steps."""

    __test__ = False

    id: str
    name: str
    steps: List[TestCaseStep] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [step.to_dict() for step in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestCaseRecord":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            steps=[TestCaseStep.from_dict(step) for step in data.get("steps") or []],
        )


@dataclass
class AutomationConfig:
    """Stored automation configuration; the plan lives in `parameters`."""

    test_case_id: str
    framework: str = "vision-agent"
    environment: str = "test"
    parameters: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutomationConfig":
        return cls(
            test_case_id=data["test_case_id"],
            framework=data.get("framework", "vision-agent"),
            environment=data.get("environment", "test"),
            parameters=dict(data.get("parameters") or {}),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class Issue:
    """Defect record filed for a failed run."""

    title: str
    description: str
    test_case_id: str
    severity: str = "high"
    status: str = "open"
    category: str = "automation"
    tags: List[str] = field(default_factory=list)
    reporter: str = "system"
    environment: str = "test"
    url: Optional[str] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class ExecutionOutcome:
    """What the driver collected for one plan execution."""

    log: ExecutionLog = field(default_factory=ExecutionLog)
    raw_report_path: Optional[Path] = None
    page_title: str = ""
    success: bool = False
    error: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunResult:
    """Value returned to whoever asked for an automation run."""

    success: bool
    logs: str
    run_id: Optional[str] = None
    report_url: Optional[str] = None
    error: Optional[str] = None
    classification: Optional[str] = None
    message: str = ""
    issue_id: Optional[str] = None
    duration: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
