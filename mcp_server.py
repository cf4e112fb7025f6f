"""MCP server bridge for the automation run engine.

This exposes a small tool surface for a chat assistant to:
- run the automation plan of a test case (or an inline plan)
- validate plan text before storing it
- classify a raw failure message
- list runs and fetch one run record

Transport: stdio (local-first).
"""
from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

import anyio
import mcp.types as types
from mcp.server import InitializationOptions, Server
from mcp.server.stdio import stdio_server

from config import EngineConfig, load_config
from engine import AutomationOrchestrator
from failure_classifier import classify, format_failure_message
from plan_codec import validate_plan
from store import RunStore

logger = logging.getLogger("automation_mcp")
logger.propagate = False
LOG_FILE = Path(__file__).with_name("automation_mcp.log")

SERVER_NAME = "automation-run-engine"


class AutomationMCPServer:
    """Glue layer between MCP and the automation orchestrator."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        orchestrator: Optional[AutomationOrchestrator] = None,
        runs: Optional[RunStore] = None,
    ) -> None:
        self.config = config or load_config()
        self.server = Server(SERVER_NAME, instructions="Run browser automation plans and inspect their runs")
        self.orchestrator = orchestrator or AutomationOrchestrator.from_config(self.config, logger=logger)
        # Listing reads the store run_automation writes to.
        self.runs = runs or self.orchestrator.lifecycle.store
        self._register_handlers()

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[types.Tool]:
            return [
                types.Tool(
                    name="run_automation",
                    description="Run the automation plan for a test case and record the run",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "test_case_id": {"type": "string"},
                            "plan": {"type": "string", "description": "Inline plan text; defaults to the stored config"},
                            "environment": {"type": "string"},
                            "executor": {"type": "string"},
                            "locale": {"type": "string", "enum": ["en", "zh", "ja"]},
                        },
                        "required": ["test_case_id"],
                    },
                ),
                types.Tool(
                    name="validate_plan",
                    description="Check plan text and list problems without running it",
                    inputSchema={"type": "object", "properties": {"plan": {"type": "string"}}, "required": ["plan"]},
                ),
                types.Tool(
                    name="classify_failure",
                    description="Classify an error message and suggest remediations",
                    inputSchema={
                        "type": "object",
                        "properties": {"error": {"type": "string"}, "locale": {"type": "string"}},
                        "required": ["error"],
                    },
                ),
                types.Tool(
                    name="list_runs",
                    description="List recent runs, optionally for one test case",
                    inputSchema={
                        "type": "object",
                        "properties": {"test_case_id": {"type": "string"}, "limit": {"type": "integer"}},
                    },
                ),
                types.Tool(
                    name="get_run",
                    description="Fetch one run record by id",
                    inputSchema={"type": "object", "properties": {"run_id": {"type": "string"}}, "required": ["run_id"]},
                ),
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
            payload = await self.dispatch(name, arguments or {})
            return [types.TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> Any:
        logger.info("call_tool start: %s args=%s", name, arguments)
        try:
            if name == "run_automation":
                payload = await self._run_automation(arguments)
            elif name == "validate_plan":
                errors = validate_plan(arguments.get("plan"))
                payload = {"valid": not errors, "errors": errors}
            elif name == "classify_failure":
                error = str(arguments.get("error") or "")
                classification = classify(error, arguments.get("locale"))
                payload = classification.to_dict()
                payload["message"] = format_failure_message(classification, error, locale=arguments.get("locale"))
            elif name == "list_runs":
                limit = int(arguments.get("limit") or 20)
                payload = [run.to_dict() for run in self.runs.list_runs(arguments.get("test_case_id"), limit)]
            elif name == "get_run":
                payload = self._get_run(arguments.get("run_id"))
            else:
                payload = {"error": f"Unknown tool: {name}"}
        except Exception as exc:
            logger.exception("Tool call failed: %s", name)
            payload = {"error": str(exc), "tool": name}

        logger.info("call_tool done: %s", name)
        return payload

    def _get_run(self, run_id: Optional[str]) -> dict[str, Any]:
        if not run_id:
            raise ValueError("run_id is required")
        run = self.runs.get(run_id)
        if run is None:
            raise FileNotFoundError(f"Run not found: {run_id}")
        return run.to_dict()

    async def _run_automation(self, args: dict[str, Any]) -> dict[str, Any]:
        test_case_id = args.get("test_case_id")
        if not test_case_id:
            raise ValueError("test_case_id is required")
        result = await self.orchestrator.run_automation(
            test_case_id,
            args.get("plan") or None,
            environment=args.get("environment"),
            executor=args.get("executor"),
            locale=args.get("locale"),
        )
        return result.to_dict()

    async def serve(self) -> None:
        init_opts = InitializationOptions(
            server_name=SERVER_NAME,
            server_version="0.1.0",
            capabilities=self.server.get_capabilities(
                notification_options=self.server.notification_options,
                experimental_capabilities={},
            ),
            instructions=self.server.instructions,
        )
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                initialization_options=init_opts,
            )


def _configure_logging() -> None:
    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"))
        # Nothing may reach stdout: it carries the MCP stdio protocol.
        logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)
        logger.handlers = [handler]
        logging.getLogger("anyio").setLevel(logging.WARNING)
        logger.info("MCP server logging to %s", LOG_FILE)
    except OSError:
        logger.exception("Failed to set up file logging")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Automation run engine MCP server (stdio)")
    parser.add_argument("--config", help="Path to config file")
    args = parser.parse_args()

    _configure_logging()
    config = load_config(Path(args.config) if args.config else None)
    srv = AutomationMCPServer(config)

    try:
        anyio.run(srv.serve)
    except Exception:
        logger.exception("MCP server crashed")
        raise


if __name__ == "__main__":
    main()
