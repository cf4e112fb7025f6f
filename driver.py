"""Runs a plan in one isolated browser session through the action agent."""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

from agent import ActionAgent, ReportPathCallback, VisionActionAgent
from browser import BrowserSession
from client_cache import ClientCache
from config import EngineConfig
from exceptions import DriverExecutionError, NavigationError, ReportNotFoundError, ScreenshotError
from plan_types import ExecutionLog, Plan
from run_types import ExecutionOutcome

AgentFactory = Callable[[], ActionAgent]
SessionFactory = Callable[[Plan], BrowserSession]


class ExecutionDriver:
    """
    Owns exactly one browser session per ``execute`` call.

    The session is never pooled; it is created, used and closed inside the
    call, so concurrent executions share nothing but read-only config.
    """

    def __init__(
        self,
        config: EngineConfig,
        agent_factory: Optional[AgentFactory] = None,
        session_factory: Optional[SessionFactory] = None,
        client_cache: Optional[ClientCache] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger("execution_driver")
        self.client_cache = client_cache or ClientCache(
            ttl_seconds=config.agent.client_cache_ttl_seconds,
            max_entries=config.agent.client_cache_max_entries,
            logger=self.logger,
        )
        self._agent_factory = agent_factory or self._default_agent
        self._session_factory = session_factory or self._default_session

    def _default_agent(self) -> ActionAgent:
        client = self.client_cache.get_client(self.config.agent.base_url, self.config.agent.api_key)
        return VisionActionAgent(
            config=self.config.agent,
            client=client,
            report_dir=self.config.reporting.report_dir,
            framework=self.config.framework,
            logger=self.logger,
        )

    def _default_session(self, plan: Plan) -> BrowserSession:
        browser = self.config.browser
        return BrowserSession(
            browser_type=browser.browser,
            headless=browser.headless,
            viewport_width=plan.target.viewport_width or browser.viewport_width,
            viewport_height=plan.target.viewport_height or browser.viewport_height,
            device_scale_factor=browser.effective_scale_factor,
            logger=self.logger,
        )

    # Report lookup
    def locate_report(
        self,
        document_id: str,
        discovered: Optional[List[Path]] = None,
        started_at: Optional[float] = None,
    ) -> Optional[Path]:
        """Find the raw report for a run.

        Order: the last path announced by the agent, then a filename ending in
        ``-<document_id>.html``, then (only when enabled) the newest report
        written after ``started_at``.
        """
        for path in reversed(discovered or []):
            if path.is_file():
                return path

        report_dir = self.config.reporting.report_dir
        if report_dir.is_dir():
            matches = sorted(
                report_dir.glob(f"*-{document_id}.html"),
                key=lambda p: p.stat().st_mtime,
                reverse=True,
            )
            if matches:
                return matches[0]

            if self.config.reporting.allow_latest_report_fallback:
                since = started_at or 0.0
                recent = [p for p in report_dir.glob("*.html") if p.stat().st_mtime >= since]
                if recent:
                    latest = max(recent, key=lambda p: p.stat().st_mtime)
                    self.logger.warning(f"Using most recent report {latest.name} for {document_id}")
                    return latest

        self.logger.warning(str(ReportNotFoundError(f"No report found for {document_id}", path=str(report_dir))))
        return None

    # Execution
    async def _navigate(self, session: BrowserSession, plan: Plan) -> None:
        try:
            await session.goto(plan.target.url, timeout=self.config.browser.navigation_timeout_ms)
        except NavigationError as exc:
            # Many pages render enough to test despite navigation errors.
            self.logger.warning(f"Navigation error, continuing: {exc}")

        policy = plan.target.wait_policy
        if policy is not None:
            timeout = policy.timeout_ms or self.config.browser.navigation_timeout_ms
            try:
                await session.wait_for_load_state("networkidle", timeout=timeout)
            except Exception as exc:
                if policy.continue_on_timeout is False:
                    raise NavigationError(
                        f"Network did not become idle within {timeout}ms",
                        url=plan.target.url,
                        timeout=timeout,
                    ) from exc
                self.logger.warning(f"Network idle wait failed, continuing: {exc}")

        await asyncio.sleep(self.config.browser.settle_delay_seconds)

    async def _diagnostic_screenshot(self, session: BrowserSession, document_id: str) -> None:
        path = self.config.reporting.scratch_dir / f"{document_id}.png"
        try:
            await session.screenshot(path=path)
            self.logger.debug(f"Diagnostic screenshot saved to {path}")
        except ScreenshotError as exc:
            self.logger.warning(f"Diagnostic screenshot failed: {exc}")

    def _log_console(self, msg_type: str, text: str) -> None:
        if msg_type == "error":
            self.logger.warning(f"[browser console] {text}")
        else:
            self.logger.debug(f"[browser console] {msg_type}: {text}")

    async def execute(
        self,
        plan: Plan,
        document_id: str,
        on_report_path: Optional[ReportPathCallback] = None,
    ) -> ExecutionOutcome:
        """Execute ``plan`` and return the log, report path and page title.

        Raises DriverExecutionError with the partial outcome attached when the
        run fails once the session was requested.
        """
        started_at = time.time()
        discovered: List[Path] = []

        def _report_path(path: Path) -> None:
            if path not in discovered:
                self.logger.info(f"Report file updated: {path}")
            discovered.append(path)
            if on_report_path is not None:
                on_report_path(path)

        session = self._session_factory(plan)
        agent: Optional[ActionAgent] = None
        page_title = ""
        try:
            await session.start()
            session.add_console_listener(self._log_console)
            await self._navigate(session, plan)
            await self._diagnostic_screenshot(session, document_id)

            agent = self._agent_factory()
            output = await agent.run_plan(
                session,
                plan,
                report_name=document_id,
                on_report_path=_report_path,
            )
            page_title = await session.get_title()
            return ExecutionOutcome(
                log=output.log,
                raw_report_path=self.locate_report(document_id, discovered, started_at),
                page_title=page_title,
                success=True,
                result=output.result,
            )
        except Exception as exc:
            self.logger.error(f"Plan execution failed: {exc}")
            if session.is_started:
                try:
                    page_title = await session.get_title()
                except Exception as title_exc:
                    self.logger.debug(f"Could not read page title: {title_exc}")
            outcome = ExecutionOutcome(
                log=agent.log if agent is not None else ExecutionLog(),
                raw_report_path=self.locate_report(document_id, discovered, started_at),
                page_title=page_title,
                success=False,
                error=str(exc),
            )
            raise DriverExecutionError(str(exc), outcome=outcome, cause=exc) from exc
        finally:
            await session.close()
