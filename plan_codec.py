"""Parser and serializer for indentation-based test plans.

Plans look like::

    target:
      url: https://example.test
      waitPolicy:
        timeoutMs: 30000
        continueOnTimeout: true
    tasks:
      - name: Login
        flow:
          - ai: type the demo credentials and submit
          - aiAssert: user is logged in
            errorMessage: login did not complete

Only this small grammar is understood; it is not a general YAML reader.
`parse_plan` never raises and always returns at least one task.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from exceptions import PlanFormatError, PlanLoadError
from plan_types import (
    STEP_ATTRIBUTES,
    UI_STATUSES,
    FlowStep,
    Plan,
    Target,
    Task,
    WaitPolicy,
)

logger = logging.getLogger("plan_codec")

PLAN_PARAMETER_KEYS = ("yaml_content", "yamlContent", "yaml")

_KEY_VALUE = re.compile(r"^(?P<key>[A-Za-z_][\w.-]*)\s*:(?P<value>.*)$")
_TARGET_KEYS = {"target", "web"}
_WAIT_POLICY_KEYS = {"waitPolicy", "waitForNetworkIdle"}
_ATTRIBUTE_FIELDS = {
    "cacheable": "cacheable",
    "errorMessage": "error_message",
    "deepThink": "deep_think",
}
_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


@dataclass(frozen=True)
class _Line:
    number: int
    indent: int
    text: str

    @property
    def is_item(self) -> bool:
        return self.text.startswith("- ") or self.text == "-"

    @property
    def item_text(self) -> str:
        return self.text[1:].strip() if self.is_item else self.text


def _strip_comment(text: str) -> str:
    """Drop a trailing ` # ...` comment that sits outside quotes."""
    quote: Optional[str] = None
    previous = ""
    index = 0
    while index < len(text):
        char = text[index]
        if quote == "'" and text.startswith("''", index):
            # Doubled single quote is an escaped quote, not the closing one.
            index += 2
            continue
        if quote == '"' and char == "\\":
            index += 2
            continue
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"') and previous in ("", ":", "-"):
            quote = char
        elif char == "#" and (index == 0 or text[index - 1] in " \t"):
            return text[:index].rstrip()
        if not char.isspace():
            previous = char
        index += 1
    return text


def _tokenize(text: str) -> List[_Line]:
    lines: List[_Line] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        expanded = raw.replace("\t", "  ")
        stripped = expanded.strip()
        if not stripped or stripped.startswith("#"):
            continue
        content = _strip_comment(stripped)
        if not content:
            continue
        indent = len(expanded) - len(expanded.lstrip(" "))
        lines.append(_Line(number=number, indent=indent, text=content))
    return lines


def _split_key(text: str) -> Tuple[Optional[str], str]:
    match = _KEY_VALUE.match(text)
    if not match:
        return None, text
    return match.group("key"), _unquote(match.group("value").strip())


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        inner = value[1:-1]
        if value[0] == "'":
            return inner.replace("''", "'")
        return inner.replace('\\"', '"').replace("\\\\", "\\")
    return value


def _as_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def _as_bool(value: str) -> Optional[bool]:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    return None


class _PlanParser:
    """Recursive-descent parser over tokenized lines."""

    def __init__(self, lines: List[_Line]):
        self.lines = lines
        self.pos = 0
        self.plan = Plan()

    # Cursor helpers
    def _peek(self) -> Optional[_Line]:
        return self.lines[self.pos] if self.pos < len(self.lines) else None

    def _advance(self) -> _Line:
        line = self.lines[self.pos]
        self.pos += 1
        return line

    def _is_task_start(self, line: _Line) -> bool:
        return line.is_item and _split_key(line.item_text)[0] == "name"

    def _skip_block(self, indent: int) -> None:
        """Skip the current line and everything nested under it."""
        self._advance()
        while True:
            line = self._peek()
            if line is None or line.indent <= indent or self._is_task_start(line):
                return
            self._advance()

    # Grammar
    def parse(self) -> Plan:
        while self._peek() is not None:
            line = self._peek()
            key, _ = _split_key(line.text)
            if self._is_task_start(line):
                self._parse_task(line.indent)
            elif key in _TARGET_KEYS and not line.is_item:
                self._parse_target(line.indent)
            elif key == "tasks" and not line.is_item:
                self._parse_tasks(line.indent)
            else:
                self._skip_block(line.indent)
        return self.plan

    def _parse_target(self, indent: int) -> None:
        self._advance()
        target = self.plan.target
        while True:
            line = self._peek()
            if line is None or line.indent <= indent:
                return
            key, value = _split_key(line.text)
            if key == "url":
                target.url = value
            elif key == "viewportWidth":
                target.viewport_width = _as_int(value)
            elif key == "viewportHeight":
                target.viewport_height = _as_int(value)
            elif key in _WAIT_POLICY_KEYS:
                target.wait_policy = self._parse_wait_policy(line.indent)
                continue
            else:
                self._skip_block(line.indent)
                continue
            self._advance()

    def _parse_wait_policy(self, indent: int) -> WaitPolicy:
        self._advance()
        policy = WaitPolicy()
        while True:
            line = self._peek()
            if line is None or line.indent <= indent:
                return policy
            key, value = _split_key(line.text)
            if key in ("timeoutMs", "timeout"):
                policy.timeout_ms = _as_int(value)
            elif key in ("continueOnTimeout", "continueOnNetworkIdleError"):
                policy.continue_on_timeout = _as_bool(value)
            self._skip_block(line.indent)

    def _parse_tasks(self, indent: int) -> None:
        self._advance()
        while True:
            line = self._peek()
            if line is None:
                return
            # Items may sit at the same indent as the `tasks:` key.
            if line.indent < indent or (line.indent == indent and not line.is_item):
                return
            if self._is_task_start(line):
                self._parse_task(line.indent)
            else:
                self._skip_block(line.indent)

    def _parse_task(self, indent: int) -> None:
        _, name = _split_key(self._advance().item_text)
        task = Task(name=name)
        self.plan.tasks.append(task)
        while True:
            line = self._peek()
            if line is None or line.indent <= indent or self._is_task_start(line):
                return
            key, value = _split_key(line.text)
            if key == "flow":
                self._parse_flow(task, line.indent)
            elif key == "status" and value in UI_STATUSES:
                task.status = value
                self._advance()
            else:
                self._skip_block(line.indent)

    def _parse_flow(self, task: Task, indent: int) -> None:
        self._advance()
        while True:
            line = self._peek()
            if line is None or line.indent < indent or self._is_task_start(line):
                return
            if line.indent == indent and not line.is_item:
                return
            key, value = _split_key(line.item_text)
            if line.is_item and key:
                task.flow.append(self._parse_step(key, value, line.indent))
            else:
                self._skip_block(line.indent)

    def _parse_step(self, step_type: str, value: str, indent: int) -> FlowStep:
        self._advance()
        step = FlowStep(type=step_type, value=value)
        while True:
            line = self._peek()
            if line is None or line.indent <= indent or line.is_item:
                return step
            key, attr_value = _split_key(line.text)
            if key in _ATTRIBUTE_FIELDS:
                setattr(step, _ATTRIBUTE_FIELDS[key], attr_value)
            elif key == "status" and attr_value in UI_STATUSES:
                step.status = attr_value
            self._skip_block(line.indent)


def _coerce_text(text: Any) -> Optional[str]:
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(text, str) or "\x00" in text:
        return None
    return text


def parse_plan(text: Any) -> Plan:
    """Parse plan text into a Plan with at least one task.

    Non-textual input yields the default single-task plan with an empty URL.
    """
    source = _coerce_text(text)
    if source is None:
        logger.warning("Plan payload is not text; using default plan")
        return Plan.default()

    try:
        plan = _PlanParser(_tokenize(source)).parse()
    except Exception as exc:
        logger.warning(f"Plan could not be parsed, using default plan: {exc}")
        return Plan.default()

    if not plan.tasks:
        plan.tasks = Plan.default().tasks
    return plan


def load_plan(text: Any) -> Plan:
    """Strict parse for execution: raise PlanFormatError instead of defaulting."""
    source = _coerce_text(text)
    if source is None:
        raise PlanFormatError("Plan payload is not text")
    if not source.strip():
        raise PlanFormatError("Plan text is empty")

    lines = _tokenize(source)
    plan = _PlanParser(lines).parse()
    if not plan.tasks:
        raise PlanFormatError("Plan defines no tasks")
    if not plan.target.url:
        line = next((item.number for item in lines if _split_key(item.text)[0] in _TARGET_KEYS), None)
        raise PlanFormatError("Plan target has no url", line=line)
    return plan


def validate_plan(text: Any) -> List[str]:
    """
    Validate plan text without executing it.

    Returns list of validation errors (empty if valid).
    """
    try:
        plan = load_plan(text)
    except PlanFormatError as exc:
        return [exc.message]

    errors = []
    for index, task in enumerate(plan.tasks, start=1):
        if not task.name:
            errors.append(f"Task {index} has no name")
        if not task.flow:
            errors.append(f"Task {index} ({task.name}) has no flow steps")
        for step in task.flow:
            if not step.is_known:
                errors.append(f"Task {index} ({task.name}) uses unknown step type '{step.type}'")
            elif step.type == "sleep" and _as_int(step.value) is None:
                errors.append(f"Task {index} ({task.name}) has a non-numeric sleep '{step.value}'")
            elif step.type != "sleep" and not step.value:
                errors.append(f"Task {index} ({task.name}) has an empty {step.type} step")
    return errors


def load_plan_file(path: Path) -> Plan:
    """Load a plan from a file, strictly."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PlanLoadError(f"Failed to read plan file: {exc}", file_path=str(path)) from exc
    return load_plan(raw)


def extract_plan_text(parameters: Any) -> Optional[str]:
    """Find the plan text inside an automation configuration parameter blob."""
    if isinstance(parameters, str):
        try:
            parameters = json.loads(parameters)
        except json.JSONDecodeError:
            return None
    if not isinstance(parameters, Mapping):
        return None
    for key in PLAN_PARAMETER_KEYS:
        value = parameters.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def plan_from_dict(data: Dict[str, Any]) -> Plan:
    """Build a plan from its JSON-style dictionary form."""
    if not isinstance(data, dict):
        raise PlanFormatError("Plan payload must be a mapping")
    raw_target = data.get("target") or data.get("web") or {}
    if not isinstance(raw_target, dict):
        raise PlanFormatError("Plan target must be a mapping")
    raw_wait = raw_target.get("waitPolicy")
    target = Target(
        url=str(raw_target.get("url") or ""),
        viewport_width=raw_target.get("viewportWidth"),
        viewport_height=raw_target.get("viewportHeight"),
        wait_policy=WaitPolicy(
            timeout_ms=raw_wait.get("timeoutMs"),
            continue_on_timeout=raw_wait.get("continueOnTimeout"),
        ) if isinstance(raw_wait, dict) else None,
    )
    tasks = []
    for raw_task in data.get("tasks") or []:
        flow = [
            FlowStep(
                type=str(raw_step.get("type", "ai")),
                value=str(raw_step.get("value", "")),
                cacheable=raw_step.get("cacheable"),
                error_message=raw_step.get("errorMessage"),
                deep_think=raw_step.get("deepThink"),
                status=raw_step.get("status"),
            )
            for raw_step in raw_task.get("flow") or []
        ]
        tasks.append(Task(name=str(raw_task.get("name", "")), flow=flow, status=raw_task.get("status")))
    return Plan(target=target, tasks=tasks or Plan.default().tasks, error=data.get("error"))


def _quote(value: str) -> str:
    """Quote a scalar when a re-parse would otherwise change it."""
    needs_quotes = (
        value != value.strip()
        or " #" in value
        or value.startswith("#")
        or (len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'))
        or "\n" in value
    )
    if not needs_quotes:
        return value
    flattened = value.replace("\n", " ")
    return "'" + flattened.replace("'", "''") + "'"


def serialize_plan(plan: Plan) -> str:
    """Render a plan back to text.

    Status fields are written as comments and do not survive a re-parse.
    """
    out: List[str] = []
    target = plan.target
    if target.url:
        out.append("target:")
        out.append(f"  url: {_quote(target.url)}")
        if target.viewport_width is not None:
            out.append(f"  viewportWidth: {target.viewport_width}")
        if target.viewport_height is not None:
            out.append(f"  viewportHeight: {target.viewport_height}")
        policy = target.wait_policy
        if policy is not None and (policy.timeout_ms is not None or policy.continue_on_timeout is not None):
            out.append("  waitPolicy:")
            if policy.timeout_ms is not None:
                out.append(f"    timeoutMs: {policy.timeout_ms}")
            if policy.continue_on_timeout is not None:
                out.append(f"    continueOnTimeout: {str(policy.continue_on_timeout).lower()}")
        out.append("")

    out.append("tasks:")
    for task in plan.tasks:
        out.append(f"  - name: {_quote(task.name)}")
        if task.status:
            out.append(f"    # status: {task.status}")
        out.append("    flow:")
        for step in task.flow:
            out.append(f"      - {step.type}: {_quote(step.value)}")
            for attribute in STEP_ATTRIBUTES:
                value = getattr(step, _ATTRIBUTE_FIELDS[attribute])
                if value is not None:
                    out.append(f"        {attribute}: {_quote(str(value))}")
            if step.status:
                out.append(f"        # status: {step.status}")
    return "\n".join(out) + "\n"
