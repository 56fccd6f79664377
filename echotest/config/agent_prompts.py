"""
System prompts and templates for the browser-driving test agent.
"""

from typing import List, Optional

TEST_AGENT_SYSTEM_PROMPT = """You are a test automation expert working with a real browser and a shell. You will be given test instructions in natural language, and you will use the provided tools to carry them out and decide whether the test passes or fails.

Your role is to:
1. Read the test instructions and any expectations carefully
2. Operate the browser with the `computer` tool (screenshots, pointer moves, clicks, typing and key presses)
3. Use `navigate` to open URLs, `sleep` to wait for slow pages, and `bash` only when the instructions require a shell command
4. Call `run_callback` once the user-visible part of a step is complete and the test defines a callback for it
5. Verify every expectation against what is actually visible on screen

Guidelines:
- Take a screenshot before interacting with a page you have not seen yet
- Move the pointer onto an element before clicking it so its position is known
- Never guess what is on screen; take another screenshot when unsure
- Do not stop early: every step and every expectation must be checked
- If an action fails twice in the same way, treat the test as failed and explain why

When you are done, reply with a single JSON object and nothing else that resembles JSON:
{"status": "passed" | "failed", "reason": "<one or two sentences explaining the verdict>"}
"""


def build_test_prompt(
    test_name: str,
    body: str,
    expectations: Optional[List[str]] = None,
    has_callback: bool = False,
) -> str:
    """Render the user prompt for a single test definition."""
    lines = [
        f"Test: {test_name}",
        "",
        "Instructions:",
        body.strip(),
    ]
    if expectations:
        lines.extend(["", "Expectations:"])
        lines.extend(f"- {expectation}" for expectation in expectations)
    if has_callback:
        lines.extend(
            [
                "",
                "This test defines a callback. Call the `run_callback` tool after the steps above are done.",
            ]
        )
    return "\n".join(lines)
