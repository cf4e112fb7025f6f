"""Typed objects for declarative browser test plans and execution logs."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Flow step types the action agent understands. Anything else is preserved.
KNOWN_STEP_TYPES = ("ai", "aiAssert", "aiTap", "sleep")
STEP_ATTRIBUTES = ("cacheable", "errorMessage", "deepThink")
UI_STATUSES = ("success", "failed", "pending")

DEFAULT_TASK_NAME = "New Test Task"
DEFAULT_STEP_VALUE = "Execute Operation"


@dataclass
class WaitPolicy:
    """How long to wait for the network to go idle after navigation."""

    timeout_ms: Optional[int] = None
    continue_on_timeout: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.timeout_ms is not None:
            data["timeoutMs"] = self.timeout_ms
        if self.continue_on_timeout is not None:
            data["continueOnTimeout"] = self.continue_on_timeout
        return data


@dataclass
class Target:
    """Page the plan runs against."""

    url: str = ""
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    wait_policy: Optional[WaitPolicy] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"url": self.url}
        if self.viewport_width is not None:
            data["viewportWidth"] = self.viewport_width
        if self.viewport_height is not None:
            data["viewportHeight"] = self.viewport_height
        if self.wait_policy is not None:
            data["waitPolicy"] = self.wait_policy.to_dict()
        return data


@dataclass
class FlowStep:
    """One instruction inside a task."""

    type: str
    value: str = ""
    cacheable: Optional[str] = None
    error_message: Optional[str] = None
    deep_think: Optional[str] = None
    status: Optional[str] = None

    @property
    def is_known(self) -> bool:
        return self.type in KNOWN_STEP_TYPES

    @property
    def is_assertion(self) -> bool:
        return self.type == "aiAssert"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "value": self.value}
        if self.cacheable is not None:
            data["cacheable"] = self.cacheable
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        if self.deep_think is not None:
            data["deepThink"] = self.deep_think
        if self.status is not None:
            data["status"] = self.status
        return data


@dataclass
class Task:
    """Named unit of a plan holding an ordered flow."""

    name: str
    flow: List[FlowStep] = field(default_factory=list)
    status: Optional[str] = None

    @property
    def assertion(self) -> Optional[str]:
        """Value of the first aiAssert step, if the task has one."""
        for step in self.flow:
            if step.is_assertion:
                return step.value
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "flow": [step.to_dict() for step in self.flow],
        }
        if self.status is not None:
            data["status"] = self.status
        return data


@dataclass
class Plan:
    """Root of a test plan: a target page plus ordered tasks."""

    target: Target = field(default_factory=Target)
    tasks: List[Task] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def default(cls, url: str = "") -> "Plan":
        """Single placeholder task, used whenever no tasks could be read."""
        return cls(
            target=Target(url=url),
            tasks=[Task(name=DEFAULT_TASK_NAME, flow=[FlowStep(type="ai", value=DEFAULT_STEP_VALUE)])],
        )

    @property
    def step_count(self) -> int:
        return sum(len(task.flow) for task in self.tasks)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "target": self.target.to_dict(),
            "tasks": [task.to_dict() for task in self.tasks],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ScreenshotRecord:
    """Recorder entry attached to an executed action."""

    screenshot: str
    type: str = "screenshot"
    timestamp: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "screenshot": self.screenshot}
        if self.timestamp is not None:
            data["ts"] = self.timestamp
        return data


@dataclass
class ActionRecord:
    """One action performed by the agent while running a task."""

    type: str
    sub_type: str = ""
    param: Dict[str, Any] = field(default_factory=dict)
    recorder: List[ScreenshotRecord] = field(default_factory=list)
    status: str = "finished"
    thought: Optional[str] = None

    @property
    def assertion(self) -> Optional[str]:
        value = self.param.get("assertion")
        return value if isinstance(value, str) else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "subType": self.sub_type,
            "param": dict(self.param),
            "recorder": [entry.to_dict() for entry in self.recorder],
            "status": self.status,
        }
        if self.thought is not None:
            data["thought"] = self.thought
        return data


@dataclass
class ExecutionRecord:
    """Log entry for one plan task as actually run by the agent."""

    name: str
    tasks: List[ActionRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tasks": [task.to_dict() for task in self.tasks]}


@dataclass
class ExecutionLog:
    """Structured log produced by a completed run."""

    executions: List[ExecutionRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"executions": [record.to_dict() for record in self.executions]}

    @classmethod
    def from_dict(cls, data: Any) -> "ExecutionLog":
        """Build a log from agent JSON, reading only the fields the engine uses.

        Unexpected shapes are skipped rather than rejected, since the log is
        produced by an external agent.
        """
        if not isinstance(data, dict):
            return cls()
        executions: List[ExecutionRecord] = []
        for raw_execution in data.get("executions") or []:
            if not isinstance(raw_execution, dict):
                continue
            actions: List[ActionRecord] = []
            for raw_task in raw_execution.get("tasks") or []:
                if not isinstance(raw_task, dict):
                    continue
                recorder = []
                for entry in raw_task.get("recorder") or []:
                    if isinstance(entry, dict):
                        recorder.append(
                            ScreenshotRecord(
                                type=str(entry.get("type", "")),
                                screenshot=entry.get("screenshot") or "",
                                timestamp=entry.get("ts"),
                            )
                        )
                param = raw_task.get("param")
                actions.append(
                    ActionRecord(
                        type=str(raw_task.get("type", "")),
                        sub_type=str(raw_task.get("subType", "")),
                        param=param if isinstance(param, dict) else {},
                        recorder=recorder,
                        status=str(raw_task.get("status", "finished")),
                        thought=raw_task.get("thought"),
                    )
                )
            executions.append(ExecutionRecord(name=str(raw_execution.get("name", "")), tasks=actions))
        return cls(executions=executions)
