"""Orchestrator that runs an automation plan end to end, plus its CLI."""
from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys
import time
from pathlib import Path
from typing import Optional, Tuple, Union

from config import EngineConfig, load_config
from correlator import ResultCorrelator, load_execution_log
from driver import ExecutionDriver
from exceptions import AutomationError, DriverExecutionError, LLMError, PlanFormatError
from failure_classifier import classify, format_failure_message
from issue_reporter import IssueAutoReporter
from lifecycle import RunLifecycleManager, build_failure_logs, build_success_logs
from plan_codec import extract_plan_text, load_plan, load_plan_file
from plan_generator import PlanGenerator
from plan_types import ExecutionLog, Plan
from reporters import JSONReporter, ReportContext, ReportPublisher
from run_types import AutomationConfig, ExecutionOutcome, Run, RunResult, TestCaseRecord
from store import (
    AutomationConfigStore,
    IssueTracker,
    JsonAutomationConfigStore,
    JsonIssueTracker,
    JsonRunStore,
    JsonTestCaseStore,
    RunStore,
    TestCaseStore,
)

PlanSource = Union[Plan, str, AutomationConfig, None]

CANCELLED_REASON = "cancelled"

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def safe_path_component(value: str) -> str:
    """Reduce an identifier to a single directory or file name."""
    cleaned = _UNSAFE_PATH_CHARS.sub("_", value).strip(".")
    return cleaned or "unknown"


def success_message(framework: str, environment: str, title: str) -> str:
    return (
        "✅ Automation test execution completed!\n\n"
        f"**Configuration Used**: {framework} ({environment})\n"
        f"**Test Case**: {title}\n\n"
        "Test report has been generated."
    )


class AutomationOrchestrator:
    """
    Runs one plan for one test case and records everything about it.

    Sequence per call: resolve plan, create run, mark running, execute,
    settle, publish report, finalize run, snapshot log, correlate steps and,
    on failure, classify and file one issue. Only PlanFormatError escapes,
    and it is raised before any run record exists.
    """

    def __init__(
        self,
        config: EngineConfig,
        runs: RunStore,
        test_cases: TestCaseStore,
        automation_configs: AutomationConfigStore,
        issues: IssueTracker,
        driver: Optional[ExecutionDriver] = None,
        publisher: Optional[ReportPublisher] = None,
        correlator: Optional[ResultCorrelator] = None,
        plan_generator: Optional[PlanGenerator] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger("orchestrator")
        self.test_cases = test_cases
        self.automation_configs = automation_configs
        self.lifecycle = RunLifecycleManager(runs, logger=self.logger)
        self.driver = driver or ExecutionDriver(config, logger=self.logger)
        self.publisher = publisher or ReportPublisher(
            config.reporting.report_dir,
            public_prefix=config.reporting.public_prefix,
            logger=self.logger,
        )
        self.correlator = correlator or ResultCorrelator(logger=self.logger)
        self.issue_reporter = IssueAutoReporter(issues, framework=config.framework, logger=self.logger)
        if plan_generator is None and config.generate_missing_plans:
            plan_generator = PlanGenerator(config.agent, target_url=config.plan_target_url, logger=self.logger)
        self.plan_generator = plan_generator

    @classmethod
    def from_config(cls, config: EngineConfig, logger: Optional[logging.Logger] = None) -> "AutomationOrchestrator":
        """Build an orchestrator backed by JSON stores under ``config.data_dir``."""
        data_dir = config.data_dir
        return cls(
            config,
            runs=JsonRunStore(data_dir / "runs.json"),
            test_cases=JsonTestCaseStore(data_dir / "test_cases.json"),
            automation_configs=JsonAutomationConfigStore(data_dir / "automation_configs.json"),
            issues=JsonIssueTracker(data_dir / "issues.json"),
            logger=logger,
        )

    def resolve_plan(
        self,
        test_case_id: str,
        plan_or_config: PlanSource,
    ) -> Tuple[Plan, Optional[AutomationConfig]]:
        """Turn whatever the caller passed into a Plan, strictly."""
        automation_config: Optional[AutomationConfig] = None
        if isinstance(plan_or_config, Plan):
            if not plan_or_config.tasks:
                raise PlanFormatError("Plan defines no tasks")
            if not plan_or_config.target.url:
                raise PlanFormatError("Plan target has no url")
            return plan_or_config, None
        if isinstance(plan_or_config, str):
            return load_plan(plan_or_config), None

        if plan_or_config is None:
            automation_config = self.automation_configs.get(test_case_id)
            if automation_config is None:
                raise PlanFormatError(f"No active automation configuration for test case {test_case_id}")
        else:
            automation_config = plan_or_config

        text = extract_plan_text(automation_config.parameters)
        if text is None:
            raise PlanFormatError(f"Automation configuration for {test_case_id} contains no plan")
        return load_plan(text), automation_config

    async def generate_plan(self, test_case_id: str) -> Tuple[Plan, AutomationConfig]:
        """Generate a plan from the test case's steps and store it as its active config."""
        if self.plan_generator is None:
            raise PlanFormatError(f"No active automation configuration for test case {test_case_id}")
        test_case = self.test_cases.get(test_case_id)
        if test_case is None:
            raise PlanFormatError(f"Test case {test_case_id} not found; cannot generate a plan")
        try:
            generated = await self.plan_generator.generate_plan(test_case)
        except LLMError as exc:
            raise PlanFormatError(f"Plan generation failed for {test_case_id}: {exc}") from exc

        automation_config = AutomationConfig(
            test_case_id=test_case_id,
            framework=self.config.framework,
            environment=self.config.default_environment,
            parameters={"yaml": generated.text, "name": generated.name, "description": generated.description},
        )
        self.automation_configs.put(automation_config)
        self.logger.info(f"Stored generated automation configuration for {test_case_id}")
        return generated.plan, automation_config

    async def _resolve_or_generate(
        self,
        test_case_id: str,
        plan_or_config: PlanSource,
    ) -> Tuple[Plan, Optional[AutomationConfig]]:
        if (
            plan_or_config is None
            and self.plan_generator is not None
            and self.automation_configs.get(test_case_id) is None
        ):
            return await self.generate_plan(test_case_id)
        return self.resolve_plan(test_case_id, plan_or_config)

    def _write_snapshot(self, test_case_id: str, run: Run, plan: Plan, outcome: ExecutionOutcome, framework: str) -> Optional[Path]:
        # One file per run so concurrent runs of a test case never collide.
        target = self.config.reporting.log_dir / safe_path_component(test_case_id) / f"{run.id}.json"
        context = ReportContext(
            plan=plan,
            log=outcome.log,
            report_name=run.id,
            page_title=outcome.page_title,
            error=outcome.error,
            framework=framework,
        )
        try:
            return JSONReporter().generate(context, target)
        except OSError as exc:
            self.logger.warning(f"Failed to write log snapshot {target}: {exc}")
            return None

    def _correlate(self, test_case: Optional[TestCaseRecord], plan: Plan, log: ExecutionLog) -> None:
        if test_case is None or not test_case.steps:
            self.logger.info("No test case steps to correlate")
            return
        try:
            result = self.correlator.correlate(plan, log, test_case.steps)
            if result.updated_count:
                self.test_cases.update_steps(test_case.id, result.steps)
                test_case.steps = result.steps
        except Exception as exc:
            self.logger.warning(f"Correlation failed for {test_case.id}: {exc}")

    def _finalize_cancelled(self, run: Run, started: float, framework: str, environment: str) -> None:
        self.logger.warning(f"Run {run.id} cancelled")
        self.lifecycle.finalize(
            run.id,
            passed=False,
            duration=time.monotonic() - started,
            logs=build_failure_logs(framework, environment, CANCELLED_REASON, None),
        )

    async def run_automation(
        self,
        test_case_id: str,
        plan_or_config: PlanSource = None,
        environment: Optional[str] = None,
        executor: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> RunResult:
        plan, automation_config = await self._resolve_or_generate(test_case_id, plan_or_config)
        framework = automation_config.framework if automation_config else self.config.framework
        environment = (
            environment
            or (automation_config.environment if automation_config else None)
            or self.config.default_environment
        )
        executor = executor or "system"

        run = self.lifecycle.create(test_case_id, environment, executor)
        self.lifecycle.mark_running(run.id)
        self.logger.info(f"Run {run.id}: executing {len(plan.tasks)} task(s) against {plan.target.url}")

        started = time.monotonic()
        finalized = False
        try:
            error: Optional[str] = None
            try:
                outcome = await self.driver.execute(plan, document_id=run.id)
            except DriverExecutionError as exc:
                error = str(exc)
                outcome = exc.outcome or ExecutionOutcome(error=error)
            except Exception as exc:
                self.logger.exception(f"Run {run.id}: driver failed unexpectedly")
                error = str(exc)
                outcome = ExecutionOutcome(error=error)
            duration = time.monotonic() - started
            success = error is None and outcome.success

            try:
                # The agent writes its report asynchronously after finishing.
                await asyncio.sleep(self.config.reporting.report_settle_seconds)
                report_url = self.publisher.publish(outcome.raw_report_path) or None
                if success:
                    logs = build_success_logs(framework, environment, report_url)
                else:
                    logs = build_failure_logs(framework, environment, error or outcome.error, report_url)
            except Exception as exc:
                self.logger.exception(f"Run {run.id}: report handling failed")
                success = False
                error = error or outcome.error or f"Report handling failed: {exc}"
                report_url = None
                logs = build_failure_logs(framework, environment, error, None)
            final = self.lifecycle.finalize(run.id, passed=success, duration=duration, logs=logs, report_url=report_url)
            finalized = True
        except asyncio.CancelledError:
            if not finalized:
                self._finalize_cancelled(run, started, framework, environment)
            raise

        snapshot_path = self._write_snapshot(test_case_id, run, plan, outcome, framework)
        snapshot = load_execution_log(snapshot_path, self.logger) if snapshot_path else None
        test_case = self.test_cases.get(test_case_id)
        self._correlate(test_case, plan, snapshot or outcome.log)

        title = test_case.name if test_case else test_case_id
        if success:
            return RunResult(
                success=True,
                logs=final.logs,
                run_id=run.id,
                report_url=final.report_url,
                message=success_message(framework, environment, title),
                duration=final.duration,
            )

        error_text = error or outcome.error or "Unknown error"
        classification = classify(error_text, locale)
        issue_id = self.issue_reporter.file_issue(
            test_case or TestCaseRecord(id=test_case_id, name=test_case_id),
            plan,
            test_case.steps if test_case else [],
            error_text,
            environment=environment,
            report_url=final.report_url,
            reporter=executor,
            framework=framework,
        )
        return RunResult(
            success=False,
            logs=final.logs,
            run_id=run.id,
            report_url=final.report_url,
            error=error_text,
            classification=classification.category.value,
            message=format_failure_message(classification, error_text, title, locale),
            issue_id=issue_id,
            duration=final.duration,
        )


async def run_from_cli_args(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Entry point shared by the CLI script."""
    config_path = Path(args.config) if args.config else None
    cli_overrides = {
        "headful": args.headful or None,
        "verbose": args.verbose or None,
        "data_dir": args.data_dir,
        "report_dir": args.report_dir,
    }
    try:
        config = load_config(config_path, cli_overrides)
    except Exception as exc:
        logger.error(f"Failed to load config: {exc}")
        return 1

    plan: PlanSource = None
    if args.plan:
        plan = load_plan_file(Path(args.plan))
    test_case_id = args.test_case_id or Path(args.plan).stem

    orchestrator = AutomationOrchestrator.from_config(config, logger=logger)
    result = await orchestrator.run_automation(
        test_case_id,
        plan,
        environment=args.environment,
        executor=args.executor,
        locale=args.locale,
    )

    print("\n" + "=" * 60)
    print(f"RUN {result.run_id}: {'PASSED' if result.success else 'FAILED'}")
    print("=" * 60)
    print(f"Duration: {result.duration}s")
    print(f"Report:   {result.report_url or 'not generated'}")
    print(f"Logs:     {result.logs}")
    if result.issue_id:
        print(f"Issue:    {result.issue_id}")
    if not result.success:
        print("\n" + result.message)

    return 0 if result.success else 1


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Run a declarative browser automation plan and record the result.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --plan plans/login.yaml                 # Run a plan file
  %(prog)s --test-case-id tc-42                    # Run the stored config for a test case
  %(prog)s --plan login.yaml --environment staging --headful
        """,
    )

    source_group = parser.add_argument_group("Plan Selection")
    source_group.add_argument("--plan", help="Plan file to execute")
    source_group.add_argument(
        "--test-case-id",
        help="Test case id (defaults to the plan file name; without --plan the stored config is used)",
    )

    run_group = parser.add_argument_group("Run Options")
    run_group.add_argument("--environment", help="Environment recorded on the run")
    run_group.add_argument("--executor", help="Who started the run (default: system)")
    run_group.add_argument("--locale", help="Locale for the failure message (en, zh, ja)")
    run_group.add_argument("--headful", action="store_true", help="Show the browser window")

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument("--config", help="Path to config file (default: autorun.yaml if exists)")
    config_group.add_argument("--data-dir", help="Directory for the JSON record stores")
    config_group.add_argument("--report-dir", help="Directory for HTML reports")

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true", help="Suppress non-essential output")

    return parser


def main() -> None:
    """Main entry point."""
    parser = _build_arg_parser()
    args = parser.parse_args()
    if not args.plan and not args.test_case_id:
        parser.error("one of --plan or --test-case-id is required")

    if args.quiet:
        log_level = logging.WARNING
    elif args.verbose:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] %(message)s" if not args.verbose else "[%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("orchestrator")

    try:
        exit_code = asyncio.run(run_from_cli_args(args, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except AutomationError as exc:
        logger.error(f"Error: {exc}")
        exit_code = 1
    except Exception as exc:
        logger.exception(f"Unexpected error: {exc}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
