"""Vision-model action agent that executes plan steps in a browser."""
from __future__ import annotations

import asyncio
import base64
import io
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from PIL import Image
from tenacity import retry, stop_after_attempt, wait_exponential

from browser import BrowserSession
from config import AgentConfig
from exceptions import (
    ActionParseError,
    AssertionFailedError,
    ExecutionError,
    LLMError,
    LLMResponseError,
)
from plan_types import ActionRecord, ExecutionLog, ExecutionRecord, FlowStep, Plan, ScreenshotRecord
from prompts import (
    ASSERT_SYSTEM_PROMPT,
    get_assert_user_prompt,
    get_step_system_prompt,
    get_step_user_prompt,
    smart_resize,
)
from reporters import HTMLReporter, ReportContext

ReportPathCallback = Callable[[Path], None]

STEP_ACTIONS = {"click", "type", "scroll", "key", "wait", "done", "fail"}
TAP_ACTIONS = {"click", "fail"}


@dataclass
class AgentRunOutput:
    """Result object and internal log returned by an agent run."""

    result: Dict[str, Any]
    log: ExecutionLog
    report_path: Optional[Path] = None


class ActionAgent(Protocol):
    """Executes a plan against a live browser session.

    Implementations write their HTML report under the report directory and
    announce its location through ``on_report_path``; the log collected so far
    is available as ``log`` even when ``run_plan`` raises.
    """

    log: ExecutionLog

    async def run_plan(
        self,
        browser: BrowserSession,
        plan: Plan,
        *,
        report_name: str,
        on_report_path: Optional[ReportPathCallback] = None,
    ) -> AgentRunOutput: ...


def parse_tool_call(response: str) -> Optional[Dict[str, Any]]:
    """Extract the action arguments from a model reply, or None."""

    def _parse_tool_obj(obj: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(obj, dict):
            return None
        # Preferred envelope
        if isinstance(obj.get("arguments"), dict) and "action" in obj["arguments"]:
            return obj["arguments"]
        # Sometimes models emit only arguments
        if isinstance(obj.get("action"), str):
            return obj
        return None

    open_tag = "<tool_call>"
    if open_tag in response:
        start = response.find(open_tag) + len(open_tag)
        end = response.find("</tool_call>", start)
        payload = response[start:end if end != -1 else len(response)].strip()
        try:
            parsed = _parse_tool_obj(json.loads(payload))
        except json.JSONDecodeError:
            parsed = None
        if parsed:
            return parsed

    # Raw JSON fallback: attempt to parse the largest {...} block
    start = response.find("{")
    end = response.rfind("}")
    if start != -1 and end > start:
        try:
            return _parse_tool_obj(json.loads(response[start:end + 1]))
        except json.JSONDecodeError:
            return None
    return None


def parse_verdict(response: str) -> tuple[bool, str]:
    """Read ``{"pass": bool, "thought": str}`` from an assertion reply."""
    start = response.find("{")
    end = response.rfind("}")
    if start == -1 or end <= start:
        raise ActionParseError("No JSON verdict in model response", raw_response=response)
    try:
        obj = json.loads(response[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ActionParseError(f"Invalid verdict JSON: {exc}", raw_response=response) from exc
    if not isinstance(obj, dict) or "pass" not in obj:
        raise ActionParseError("Verdict is missing 'pass'", raw_response=response)
    verdict = obj["pass"]
    if isinstance(verdict, str):
        verdict = verdict.strip().lower() == "true"
    return bool(verdict), str(obj.get("thought") or "")


def parse_sleep_ms(value: str) -> int:
    try:
        return max(0, int(float(value)))
    except ValueError:
        return 0


def to_data_url(png_bytes: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


class VisionActionAgent:
    """Drives the page with an OpenAI-compatible vision model, one step at a time."""

    def __init__(
        self,
        config: AgentConfig,
        client: Any,
        report_dir: Path,
        framework: str = "vision-agent",
        reporter: Optional[HTMLReporter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.client = client
        self.report_dir = report_dir
        self.framework = framework
        self.reporter = reporter or HTMLReporter()
        self.logger = logger or logging.getLogger("action_agent")
        self.log = ExecutionLog()
        self.last_im_size: Optional[tuple[int, int]] = None
        self._viewport: tuple[int, int] = (1280, 800)

    # Model access
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2.0, min=2.0, max=10),
        reraise=True,
    )
    async def _call_model(self, messages: List[Dict[str, Any]]) -> str:
        """Call the LLM with retry logic."""
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
            content = response.choices[0].message.content
            if not content:
                raise LLMResponseError("Empty response from model", model=self.config.model)
            return content
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(f"Model call failed: {e}") from e

    async def _capture(self, browser: BrowserSession) -> tuple[bytes, str]:
        """Screenshot the page; returns raw PNG and the resized model image as a data URL."""
        png = await browser.screenshot()
        image = Image.open(io.BytesIO(png))
        height, width = smart_resize(image.height, image.width)
        self.last_im_size = (width, height)
        buffer = io.BytesIO()
        image.convert("RGB").resize((width, height)).save(buffer, format="PNG")
        return png, to_data_url(buffer.getvalue())

    def _to_viewport(self, coords: List[float]) -> tuple[float, float]:
        """Scale coordinates from the resized model image back to the viewport."""
        if not self.last_im_size:
            return float(coords[0]), float(coords[1])
        im_w, im_h = self.last_im_size
        return coords[0] * self._viewport[0] / im_w, coords[1] * self._viewport[1] / im_h

    @staticmethod
    def _messages(system: str, text: str, image_url: str) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": system},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": text},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            },
        ]

    # Step execution
    async def _execute_action(self, browser: BrowserSession, args: Dict[str, Any]) -> str:
        action = args.get("action")
        if action == "click":
            x, y = self._to_viewport(args.get("coordinate") or [0, 0])
            await browser.click(x, y)
            return f"I clicked at ({x:.0f}, {y:.0f})."
        if action == "type":
            if args.get("coordinate"):
                x, y = self._to_viewport(args["coordinate"])
                await browser.click(x, y)
            text = str(args.get("text", ""))
            await browser.type_text(
                text,
                press_enter=bool(args.get("press_enter", False)),
                delete_existing_text=bool(args.get("delete_existing_text", False)),
            )
            return f"I typed '{text}'."
        if action == "scroll":
            pixels = int(args.get("pixels", -300))
            await browser.scroll(pixels)
            return f"I scrolled {'up' if pixels > 0 else 'down'}."
        if action == "key":
            keys = args.get("keys") or []
            if isinstance(keys, str):
                keys = [keys]
            await browser.press_keys(keys)
            return f"I pressed keys: {', '.join(keys)}."
        if action == "wait":
            seconds = min(float(args.get("time", 1) or 1), 30.0)
            await asyncio.sleep(seconds)
            return f"I waited {seconds:g} seconds."
        return f"Unknown action: {action}"

    async def _run_instruction(
        self,
        browser: BrowserSession,
        step: FlowStep,
        action: ActionRecord,
        tap_only: bool,
    ) -> None:
        allowed = TAP_ACTIONS if tap_only else STEP_ACTIONS
        max_rounds = 1 if tap_only else self.config.max_rounds_per_step
        history: List[str] = []
        for round_index in range(1, max_rounds + 1):
            _, image_url = await self._capture(browser)
            width, height = self.last_im_size
            response = await self._call_model(
                self._messages(
                    get_step_system_prompt(width, height, tap_only=tap_only),
                    get_step_user_prompt(step.value, history),
                    image_url,
                )
            )
            args = parse_tool_call(response)
            if not args or args.get("action") not in allowed:
                raise ActionParseError("Model reply has no usable action", raw_response=response)

            name = args["action"]
            self.logger.info(f"[{step.type}] round {round_index}: {name}")
            if name == "done":
                action.thought = str(args.get("reason") or "")
                return
            if name == "fail":
                reason = str(args.get("reason") or "no reason given")
                action.thought = reason
                raise ExecutionError(step.error_message or f"Could not perform '{step.value}': {reason}")
            history.append(await self._execute_action(browser, args))
            if tap_only:
                action.thought = history[-1]
                return
        raise ExecutionError(f"Step '{step.value}' did not finish within {max_rounds} rounds")

    async def _run_assert(self, browser: BrowserSession, step: FlowStep, action: ActionRecord) -> None:
        _, image_url = await self._capture(browser)
        response = await self._call_model(
            self._messages(ASSERT_SYSTEM_PROMPT, get_assert_user_prompt(step.value), image_url)
        )
        passed, thought = parse_verdict(response)
        action.thought = thought
        if not passed:
            raise AssertionFailedError(
                step.error_message or f"Assertion failed: {step.value}",
                assertion=step.value,
                reason=thought,
            )

    async def _run_step(self, browser: BrowserSession, step: FlowStep, action: ActionRecord) -> None:
        if step.type == "sleep":
            await asyncio.sleep(parse_sleep_ms(step.value) / 1000)
        elif step.type == "aiAssert":
            await self._run_assert(browser, step, action)
        elif step.type in ("ai", "aiTap"):
            await self._run_instruction(browser, step, action, tap_only=step.type == "aiTap")
        else:
            self.logger.warning(f"Skipping unsupported step type '{step.type}'")
            action.status = "skipped"

    @staticmethod
    def _new_action(step: FlowStep) -> ActionRecord:
        if step.type == "aiAssert":
            return ActionRecord(type="Insight", sub_type="Assert", param={"assertion": step.value})
        if step.type == "sleep":
            return ActionRecord(type="Action", sub_type="Sleep", param={"timeMs": parse_sleep_ms(step.value)})
        if step.type == "aiTap":
            return ActionRecord(type="Action", sub_type="Tap", param={"prompt": step.value})
        return ActionRecord(type="Planning", sub_type=step.type, param={"prompt": step.value})

    async def _record_screenshot(self, browser: BrowserSession, action: ActionRecord) -> None:
        try:
            png = await browser.screenshot()
        except Exception as exc:
            self.logger.warning(f"Evidence screenshot failed: {exc}")
            return
        action.recorder.append(ScreenshotRecord(screenshot=to_data_url(png), timestamp=time.time()))

    # Reports
    def report_path_for(self, report_name: str) -> Path:
        stamp = time.strftime("%Y%m%d%H%M%S")
        return self.report_dir / f"{self.framework}-{stamp}-{report_name}.html"

    def _write_report(
        self,
        target: Path,
        plan: Plan,
        report_name: str,
        page_title: str,
        error: Optional[str],
        on_report_path: Optional[ReportPathCallback],
    ) -> Optional[Path]:
        context = ReportContext(
            plan=plan,
            log=self.log,
            report_name=report_name,
            page_title=page_title,
            error=error,
            framework=self.framework,
        )
        try:
            path = self.reporter.generate(context, target)
        except OSError as exc:
            self.logger.warning(f"Failed to write report {target}: {exc}")
            return None
        if on_report_path is not None:
            on_report_path(path)
        return path

    async def run_plan(
        self,
        browser: BrowserSession,
        plan: Plan,
        *,
        report_name: str,
        on_report_path: Optional[ReportPathCallback] = None,
    ) -> AgentRunOutput:
        """Run every task of the plan; raises on the first failing step."""
        self.log = ExecutionLog()
        self._viewport = (browser.viewport_width, browser.viewport_height)
        target = self.report_path_for(report_name)
        page_title = ""
        report_path: Optional[Path] = None
        passed_assertions = 0

        for task in plan.tasks:
            record = ExecutionRecord(name=task.name)
            self.log.executions.append(record)
            self.logger.info(f"Running task: {task.name}")
            for step in task.flow:
                action = self._new_action(step)
                record.tasks.append(action)
                try:
                    await self._run_step(browser, step, action)
                except Exception as exc:
                    action.status = "failed"
                    await self._record_screenshot(browser, action)
                    self._write_report(target, plan, report_name, page_title, str(exc), on_report_path)
                    raise
                if step.is_assertion:
                    passed_assertions += 1
                if step.type != "sleep":
                    await self._record_screenshot(browser, action)
            page_title = await browser.get_title()
            report_path = self._write_report(target, plan, report_name, page_title, None, on_report_path)

        result = {
            "tasks": len(plan.tasks),
            "steps": plan.step_count,
            "assertions_passed": passed_assertions,
            "page_title": page_title,
        }
        return AgentRunOutput(result=result, log=self.log, report_path=report_path)
