"""
Model-facing tools and the bridge that executes them.
"""

from echotest.tools.bridge import COMPONENT_DESCRIPTION_KEY, ToolBridge
from echotest.tools.definitions import (
    BashToolCall,
    ComputerAction,
    ComputerToolCall,
    NavigateToolCall,
    RunCallbackToolCall,
    SleepToolCall,
    ToolCall,
    ToolDefinition,
    build_tool_definitions,
    parse_tool_call,
)

__all__ = [
    "ToolBridge",
    "COMPONENT_DESCRIPTION_KEY",
    "ToolCall",
    "ToolDefinition",
    "ComputerAction",
    "ComputerToolCall",
    "BashToolCall",
    "SleepToolCall",
    "NavigateToolCall",
    "RunCallbackToolCall",
    "build_tool_definitions",
    "parse_tool_call",
]
