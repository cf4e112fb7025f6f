"""Generate a plan from a test case's manual steps with the chat model."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from tenacity import retry, stop_after_attempt, wait_exponential

from client_cache import ClientCache
from config import AgentConfig
from exceptions import ActionParseError, LLMError, LLMResponseError
from plan_codec import load_plan
from plan_types import Plan
from prompts import PLAN_GENERATION_SYSTEM_PROMPT, get_plan_generation_user_prompt
from run_types import TestCaseRecord

_FENCE_OPEN = re.compile(r"^```[A-Za-z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


@dataclass
class GeneratedPlan:
    """A freshly generated plan plus the text it was parsed from."""

    plan: Plan
    text: str
    name: str = ""
    description: str = ""


def extract_generated_plan(response: str) -> Tuple[str, Dict[str, Any]]:
    """
    Pull plan text out of a generation reply.

    Replies are normally ``{"success": true, "config": {"yamlContent": ...}}``,
    sometimes wrapped in a code fence. A reply that is not a JSON object is
    taken as the plan text itself.

    Returns:
        Tuple of (plan text, config metadata)
    """
    text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", response.strip()))
    if not text.startswith("{"):
        return text, {}

    try:
        payload = json.loads(text[:text.rfind("}") + 1])
    except json.JSONDecodeError as exc:
        raise ActionParseError(f"Invalid plan generation JSON: {exc}", raw_response=response) from exc
    if not isinstance(payload, dict):
        raise ActionParseError("Plan generation reply is not an object", raw_response=response)
    if payload.get("success") is False:
        raise LLMResponseError(
            f"Plan generation declined: {payload.get('error') or 'no reason given'}",
            response=response,
        )

    config = payload.get("config")
    if not isinstance(config, dict) or not isinstance(config.get("yamlContent"), str):
        raise ActionParseError("Plan generation reply has no config.yamlContent", raw_response=response)
    return config["yamlContent"], config


class PlanGenerator:
    """Asks the chat model for a plan covering every step of a test case."""

    def __init__(
        self,
        config: AgentConfig,
        client: Any = None,
        client_cache: Optional[ClientCache] = None,
        target_url: str = "",
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.target_url = target_url
        self.logger = logger or logging.getLogger("plan_generator")
        self._client = client
        self.client_cache = client_cache or ClientCache(
            ttl_seconds=config.client_cache_ttl_seconds,
            max_entries=config.client_cache_max_entries,
            logger=self.logger,
        )

    @property
    def client(self) -> Any:
        if self._client is not None:
            return self._client
        return self.client_cache.get_client(self.config.base_url, self.config.api_key)

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
                temperature=self.config.plan_temperature,
                max_tokens=self.config.plan_max_tokens,
            )
            content = response.choices[0].message.content
            if not content:
                raise LLMResponseError("Empty response from model", model=self.config.model)
            return content
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(f"Model call failed: {e}") from e

    async def generate_plan(self, test_case: TestCaseRecord) -> GeneratedPlan:
        """Generate and strictly parse a plan; raises PlanFormatError or LLMError."""
        if not test_case.steps:
            raise LLMError(f"Test case {test_case.id} has no steps to generate a plan from")

        prompt = get_plan_generation_user_prompt(
            test_case.id,
            test_case.name,
            test_case.description,
            [(step.action, step.expected) for step in test_case.steps],
            target_url=self.target_url,
        )
        self.logger.info(f"Generating plan for {test_case.id} from {len(test_case.steps)} step(s)")
        response = await self._call_model(
            [
                {"role": "system", "content": PLAN_GENERATION_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ]
        )

        text, metadata = extract_generated_plan(response)
        plan = load_plan(text)
        self.logger.info(f"Generated plan for {test_case.id} with {len(plan.tasks)} task(s)")
        return GeneratedPlan(
            plan=plan,
            text=text,
            name=str(metadata.get("name") or test_case.name),
            description=str(metadata.get("description") or ""),
        )
