"""Unit tests for plan_generator module."""
from __future__ import annotations

import json

import pytest

from config import AgentConfig
from exceptions import ActionParseError, LLMError, LLMResponseError, PlanFormatError
from plan_generator import PlanGenerator, extract_generated_plan
from run_types import TestCaseRecord


def _reply(plan_text: str, **config) -> str:
    return json.dumps({"success": True, "config": {"name": "Login", "yamlContent": plan_text, **config}})


@pytest.fixture
def generator(mock_llm_client) -> PlanGenerator:
    return PlanGenerator(AgentConfig(), client=mock_llm_client, target_url="https://x.test/login")


class TestExtractGeneratedPlan:
    """Tests for extract_generated_plan."""

    def test_reads_yaml_content(self, sample_plan_text):
        text, metadata = extract_generated_plan(_reply(sample_plan_text, description="d"))
        assert text == sample_plan_text
        assert metadata["name"] == "Login"
        assert metadata["description"] == "d"

    def test_strips_code_fence(self, sample_plan_text):
        text, _ = extract_generated_plan(f"```json\n{_reply(sample_plan_text)}\n```")
        assert text == sample_plan_text

    def test_plain_text_reply_is_the_plan(self):
        text, metadata = extract_generated_plan("```yaml\ntarget:\n  url: https://x.test\n```")
        assert text == "target:\n  url: https://x.test"
        assert metadata == {}

    def test_declined_generation_raises(self):
        with pytest.raises(LLMResponseError, match="not enough detail"):
            extract_generated_plan('{"success": false, "error": "not enough detail"}')

    @pytest.mark.parametrize("reply", ['{"success": true}', '{"config": {"yamlContent": 3}}', "{not json"])
    def test_malformed_reply_raises(self, reply):
        with pytest.raises(ActionParseError):
            extract_generated_plan(reply)


class TestPlanGenerator:
    """Tests for PlanGenerator.generate_plan with a scripted model."""

    @pytest.mark.asyncio
    async def test_generates_plan_from_steps(self, generator, mock_llm_client, sample_test_case, sample_plan_text):
        mock_llm_client.replies = [_reply(sample_plan_text, description="covers login")]

        generated = await generator.generate_plan(sample_test_case)

        assert [task.name for task in generated.plan.tasks] == ["Login", "Logout"]
        assert generated.plan.target.url == "https://x.test/login"
        assert generated.text == sample_plan_text
        assert generated.name == "Login"
        assert generated.description == "covers login"

    @pytest.mark.asyncio
    async def test_prompt_lists_steps_and_target(self, generator, mock_llm_client, sample_test_case, sample_plan_text):
        mock_llm_client.replies = [_reply(sample_plan_text)]
        seen = []
        scripted = mock_llm_client.chat.completions.create

        async def create(**kwargs):
            seen.append(kwargs)
            return await scripted(**kwargs)

        mock_llm_client.chat.completions.create = create

        await generator.generate_plan(sample_test_case)

        prompt = seen[0]["messages"][1]["content"]
        assert "Step 1: Log in as demo\nExpected: Dashboard is shown" in prompt
        assert "Step 2: Log out" in prompt
        assert "Target URL: https://x.test/login" in prompt
        assert seen[0]["max_tokens"] == AgentConfig().plan_max_tokens

    @pytest.mark.asyncio
    async def test_plan_without_url_is_rejected(self, generator, mock_llm_client, sample_test_case):
        mock_llm_client.replies = [_reply("tasks:\n  - name: Login\n    flow:\n      - aiAssert: ok\n")]

        with pytest.raises(PlanFormatError):
            await generator.generate_plan(sample_test_case)

    @pytest.mark.asyncio
    async def test_test_case_without_steps_raises(self, generator):
        with pytest.raises(LLMError):
            await generator.generate_plan(TestCaseRecord(id="tc-9", name="Empty"))

    def test_client_comes_from_cache(self):
        generator = PlanGenerator(AgentConfig(api_key="k"))
        assert generator.client is generator.client
        assert len(generator.client_cache) == 1
