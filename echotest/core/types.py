"""
Core data models and types for the echotest engine.

Models that are persisted to the action cache serialise with camelCase
aliases; always dump them with ``by_alias=True``.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class VerdictStatus(str, Enum):
    """Terminal outcome of a test conversation."""

    PASSED = "passed"
    FAILED = "failed"


class FinishReason(str, Enum):
    """Why a provider generation step ended."""

    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"
    OTHER = "other"
    STOP = "stop"


class LoopState(str, Enum):
    """States of the conversation loop."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"
    FAILED = "failed"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TestIdentity(_CamelModel):
    """A natural-language test definition as supplied by the authoring layer."""

    __test__ = False

    name: str
    file_path: str = Field(..., alias="filePath")
    body: str = Field(..., description="Natural-language instructions")
    expectations: List[str] = Field(default_factory=list)
    callback: Optional[Callable[[], Awaitable[Any]]] = Field(
        default=None,
        exclude=True,
        description="Hook invoked by the run_callback tool",
    )

    def fingerprint_payload(self) -> Dict[str, Any]:
        """Everything that defines the test; the callback is not serialisable."""
        return {
            "name": self.name,
            "filePath": self.file_path,
            "body": self.body,
            "expectations": list(self.expectations),
        }


class CacheAction(BaseModel):
    """The tool invocation recorded in a cache step."""

    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class CacheStep(BaseModel):
    """One recorded tool invocation, replayable without the model."""

    reasoning: str = ""
    action: Optional[CacheAction] = None
    result: Optional[str] = None
    extras: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=now_ms)


class TokenUsage(_CamelModel):
    """Provider-reported token counts."""

    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class Verdict(BaseModel):
    """Final pass/fail judgment emitted by the model."""

    status: VerdictStatus
    reason: str

    @property
    def passed(self) -> bool:
        return self.status == VerdictStatus.PASSED


class RunMetadata(_CamelModel):
    """Run-level information stored alongside cached steps."""

    version: int = 1
    status: VerdictStatus
    reason: str = ""
    token_usage: TokenUsage = Field(default_factory=TokenUsage, alias="tokenUsage")
    run_id: str = Field(..., alias="runId")
    from_cache: bool = Field(default=False, alias="fromCache")


class CachedTest(_CamelModel):
    """Label of the test an entry belongs to."""

    name: str
    file_path: str = Field(..., alias="filePath")


class CacheData(BaseModel):
    steps: List[CacheStep] = Field(default_factory=list)


class CacheEntry(BaseModel):
    """Everything persisted for one fingerprint."""

    test: CachedTest
    data: CacheData = Field(default_factory=CacheData)
    timestamp: int = Field(default_factory=now_ms)
    metadata: Optional[RunMetadata] = None

    @property
    def steps(self) -> List[CacheStep]:
        return self.data.steps


class LockRecord(_CamelModel):
    """Owner identity written into a lock file."""

    owner_id: int = Field(..., alias="ownerId")
    timestamp: int = Field(default_factory=now_ms)


# Conversation content


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    data: str = Field(..., description="Base64-encoded image")
    media_type: str = "image/png"


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: List[Annotated[Union[TextBlock, ImageBlock], Field(discriminator="type")]] = Field(
        default_factory=list
    )


ContentBlock = Annotated[
    Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class ConversationMessage(BaseModel):
    """One turn of the conversation history."""

    role: Literal["user", "assistant"]
    content: List[ContentBlock] = Field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> "ConversationMessage":
        return cls(role="user", content=[TextBlock(text=text)])

    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    def tool_uses(self) -> List[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


# Tools and provider


class ToolResult(BaseModel):
    """Outcome of a tool execution as returned by the driver."""

    output: Optional[str] = None
    base64_image: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProviderToolCall(BaseModel):
    """A tool call requested by the model."""

    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ProviderResponse(BaseModel):
    """Normalised result of one provider round-trip."""

    text: str = ""
    finish_reason: FinishReason
    tool_calls: List[ProviderToolCall] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    response_messages: List[ConversationMessage] = Field(default_factory=list)


class ConversationResult(BaseModel):
    """Terminal output of a conversation run."""

    verdict: Verdict
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    steps: List[CacheStep] = Field(default_factory=list)
    turns: int = 0


class TestResult(BaseModel):
    """Outcome of executing one test through the orchestrator."""

    __test__ = False

    test: TestIdentity
    verdict: Verdict
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    steps: List[CacheStep] = Field(default_factory=list)
    from_cache: bool = False
    run_id: str
    fingerprint: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return max(0.0, (self.finished_at - self.started_at).total_seconds())
