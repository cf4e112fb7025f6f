"""Pytest fixtures for the automation run engine tests."""
from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import EngineConfig
from plan_codec import load_plan
from plan_types import ActionRecord, ExecutionLog, ExecutionRecord, Plan, ScreenshotRecord
from run_types import TestCaseRecord, TestCaseStep
from store import JsonAutomationConfigStore, JsonIssueTracker, JsonRunStore, JsonTestCaseStore

LOGIN_PLAN = """
target:
  url: https://x.test/login
tasks:
  - name: Login
    flow:
      - ai: type demo into the username field and submit
      - aiAssert: user is logged in
  - name: Logout
    flow:
      - aiTap: the logout button
      - aiAssert: login form is visible
"""


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_plan_text() -> str:
    return LOGIN_PLAN


@pytest.fixture
def sample_plan() -> Plan:
    return load_plan(LOGIN_PLAN)


@pytest.fixture
def sample_log() -> ExecutionLog:
    """Execution log as the agent records it for LOGIN_PLAN."""
    return ExecutionLog(
        executions=[
            ExecutionRecord(
                name="Login",
                tasks=[
                    ActionRecord(type="Planning", sub_type="ai", param={"prompt": "type demo"}),
                    ActionRecord(
                        type="Insight",
                        sub_type="Assert",
                        param={"assertion": "user is logged in"},
                        recorder=[ScreenshotRecord(screenshot="data:image/png;base64,AAAA")],
                    ),
                ],
            ),
        ]
    )


@pytest.fixture
def sample_test_case() -> TestCaseRecord:
    return TestCaseRecord(
        id="tc-1",
        name="Login and logout",
        steps=[
            TestCaseStep(step=1, action="Log in as demo", expected="Dashboard is shown", notes="old login notes"),
            TestCaseStep(step=2, action="Log out", expected="Login form is shown", notes="old logout notes"),
        ],
    )


@pytest.fixture
def engine_config(temp_dir: Path) -> EngineConfig:
    """Config with every directory under temp_dir and no waiting."""
    return EngineConfig.model_validate(
        {
            "data_dir": str(temp_dir / "data"),
            "browser": {"settle_delay_seconds": 0},
            "reporting": {
                "report_dir": str(temp_dir / "public" / "report"),
                "scratch_dir": str(temp_dir / "public" / "screenshots"),
                "log_dir": str(temp_dir / "data" / "automation"),
                "report_settle_seconds": 0,
            },
        }
    )


@pytest.fixture
def stores():
    """In-memory stores: runs, test cases, automation configs, issues."""
    return JsonRunStore(), JsonTestCaseStore(), JsonAutomationConfigStore(), JsonIssueTracker()


@pytest.fixture
def mock_browser() -> MagicMock:
    """Create a mock browser session for testing."""
    browser = MagicMock()
    browser.viewport_width = 1280
    browser.viewport_height = 800
    browser.is_started = True
    browser.start = AsyncMock()
    browser.close = AsyncMock()
    browser.goto = AsyncMock()
    browser.wait_for_load_state = AsyncMock()
    browser.screenshot = AsyncMock(return_value=b"fake_png")
    browser.click = AsyncMock()
    browser.type_text = AsyncMock()
    browser.press_keys = AsyncMock()
    browser.scroll = AsyncMock()
    browser.get_url = MagicMock(return_value="https://x.test/login")
    browser.get_title = AsyncMock(return_value="Example Page")
    browser.add_console_listener = MagicMock()
    browser.get_console_messages = MagicMock(return_value=[])
    return browser


@pytest.fixture
def mock_llm_client() -> MagicMock:
    """LLM client whose replies are queued on ``client.replies``."""
    client = MagicMock()
    client.replies = []

    async def mock_create(**kwargs):
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = client.replies.pop(0)
        return response

    client.chat.completions.create = mock_create
    return client
