"""
Configuration module exports.
"""

from echotest.config.agent_prompts import TEST_AGENT_SYSTEM_PROMPT, build_test_prompt
from echotest.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "TEST_AGENT_SYSTEM_PROMPT",
    "build_test_prompt",
]
