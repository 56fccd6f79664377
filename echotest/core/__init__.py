"""
Core module exports.
"""

from echotest.core.interfaces import BrowserDriver, LanguageModelProvider
from echotest.core.types import (
    CacheAction,
    CacheEntry,
    CacheStep,
    ConversationMessage,
    ConversationResult,
    FinishReason,
    ImageBlock,
    LockRecord,
    LoopState,
    ProviderResponse,
    ProviderToolCall,
    RunMetadata,
    TestIdentity,
    TestResult,
    TextBlock,
    TokenUsage,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
    Verdict,
    VerdictStatus,
)

__all__ = [
    # Interfaces
    "BrowserDriver",
    "LanguageModelProvider",
    # Types
    "TestIdentity",
    "CacheAction",
    "CacheStep",
    "CacheEntry",
    "RunMetadata",
    "LockRecord",
    "TokenUsage",
    "Verdict",
    "VerdictStatus",
    "FinishReason",
    "LoopState",
    "TextBlock",
    "ImageBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "ConversationMessage",
    "ToolResult",
    "ProviderToolCall",
    "ProviderResponse",
    "ConversationResult",
    "TestResult",
]
