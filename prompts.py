"""Prompts and image sizing for the vision action agent."""
import math

IMAGE_FACTOR = 28
MIN_PIXELS = 4 * 28 * 28
MAX_PIXELS = 1280 * 28 * 28
MAX_RATIO = 200


def round_by_factor(number: float, factor: int) -> int:
    """Returns the closest integer to 'number' that is divisible by 'factor'."""
    return round(number / factor) * factor


def ceil_by_factor(number: float, factor: int) -> int:
    """Returns the smallest integer greater than or equal to 'number' that is divisible by 'factor'."""
    return math.ceil(number / factor) * factor


def floor_by_factor(number: float, factor: int) -> int:
    """Returns the largest integer less than or equal to 'number' that is divisible by 'factor'."""
    return math.floor(number / factor) * factor


def smart_resize(
    height: int,
    width: int,
    factor: int = IMAGE_FACTOR,
    min_pixels: int = MIN_PIXELS,
    max_pixels: int = MAX_PIXELS,
) -> tuple[int, int]:
    """
    Rescales a screenshot so that:
    1. Both dimensions are divisible by 'factor'.
    2. The total number of pixels is within ['min_pixels', 'max_pixels'].
    3. The aspect ratio is maintained as closely as possible.
    """
    if max(height, width) / min(height, width) > MAX_RATIO:
        raise ValueError(
            f"absolute aspect ratio must be smaller than {MAX_RATIO}, got {max(height, width) / min(height, width)}"
        )
    h_bar = max(factor, round_by_factor(height, factor))
    w_bar = max(factor, round_by_factor(width, factor))
    if h_bar * w_bar > max_pixels:
        beta = math.sqrt((height * width) / max_pixels)
        h_bar = floor_by_factor(height / beta, factor)
        w_bar = floor_by_factor(width / beta, factor)
    elif h_bar * w_bar < min_pixels:
        beta = math.sqrt(min_pixels / (height * width))
        h_bar = ceil_by_factor(height * beta, factor)
        w_bar = ceil_by_factor(width * beta, factor)
    return h_bar, w_bar


def get_step_system_prompt(width: int, height: int, tap_only: bool = False) -> str:
    """System prompt for executing one natural-language plan step."""
    if tap_only:
        actions = """- `click`: Click at `coordinate` [x, y] on the element described by the instruction.
- `fail`: The element cannot be found. Include a `reason`."""
    else:
        actions = """- `click`: Click at `coordinate` [x, y].
- `type`: Type `text`; optionally give `coordinate` to focus first, `press_enter` and `delete_existing_text`.
- `scroll`: Scroll by `pixels` (positive=up, negative=down).
- `key`: Press `keys` in order (e.g., ["Enter", "Tab", "Escape"]).
- `wait`: Wait `time` seconds for the page to settle.
- `done`: The instruction is fully carried out. Include a short `reason`.
- `fail`: The instruction cannot be carried out. Include a `reason`."""

    return f"""You are a careful browser automation agent executing one step of a test plan.

The screenshot resolution is {width}x{height} pixels; coordinates refer to this image.

Rules:
- Perform exactly one action per reply, based only on what is visible.
- Aim at the visual center of the target element.
- When the instruction is already satisfied on screen, reply with `done`.
- Never claim success you cannot see; use `fail` and explain the blocker instead.

Available actions:
{actions}

Reply with a single tool call:
<tool_call>
{{"name": "browser", "arguments": {{"action": "ACTION_NAME", ...}}}}
</tool_call>

Example:
<tool_call>
{{"name": "browser", "arguments": {{"action": "click", "coordinate": [120, 340]}}}}
</tool_call>"""


ASSERT_SYSTEM_PROMPT = """You are a strict QA reviewer checking a web page screenshot against an assertion.

Judge only what is visible in the screenshot. If the assertion is ambiguous or cannot be confirmed, it fails.

Reply with JSON only:
{"pass": true or false, "thought": "one sentence explaining what you saw"}"""


def get_step_user_prompt(instruction: str, previous: list[str]) -> str:
    history = "\n".join(f"- {item}" for item in previous[-5:]) or "- (none)"
    return f"""Instruction: {instruction}

Actions already taken for this instruction:
{history}

Decide the next action."""


def get_assert_user_prompt(assertion: str) -> str:
    return f"Assertion: {assertion}"


PLAN_GENERATION_SYSTEM_PROMPT = """You write browser test plans for a vision-driven automation agent.

A plan is indentation-based text in exactly this shape:

target:
  url: https://app.example.test/login
tasks:
  - name: Log in
    flow:
      - ai: type the demo credentials and submit the form
      - aiAssert: the dashboard is visible

Step types:
- `ai`: a natural-language instruction the agent carries out.
- `aiTap`: a single click on the described element.
- `sleep`: pause for a number of milliseconds.
- `aiAssert`: a statement about the screen that must be true.

Rules:
- Write one task per test step, in the same order, named after the step.
- End every task with exactly one `aiAssert` describing the expected result.
- Describe elements by what is visible on screen, never by CSS selectors.

Return ONLY a JSON object, without markdown code fences:
{"success": true, "config": {"name": "...", "description": "...", "yamlContent": "<the plan text>"}}"""


def get_plan_generation_user_prompt(
    test_case_id: str,
    name: str,
    description: str,
    steps: list[tuple[str, str]],
    target_url: str = "",
) -> str:
    """User prompt listing a test case's steps as (action, expected) pairs."""
    steps_info = "\n\n".join(
        f"Step {index}: {action}\nExpected: {expected}" for index, (action, expected) in enumerate(steps, start=1)
    )
    return f"""Test Case ID: {test_case_id}
Test Case Name: {name}
Description: {description or 'None'}
Target URL: {target_url or 'Unknown; infer it from the steps'}

Test Steps ({len(steps)} steps):
{steps_info}

Generate the automation plan for this test case. Create one task per test step with its assertion."""
