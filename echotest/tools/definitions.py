"""
Tool registry exposed to the model.

The registry is closed: every tool the model may call has a typed call
model here, and :func:`parse_tool_call` rejects anything else.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from echotest.core.types import ProviderToolCall
from echotest.error_handling.exceptions import ToolExecutionError, UnknownToolError

MAX_SLEEP_MS = 60_000


class ComputerAction(str, Enum):
    """Actions understood by the computer tool."""

    KEY = "key"
    TYPE = "type"
    MOUSE_MOVE = "mouse_move"
    LEFT_CLICK = "left_click"
    LEFT_CLICK_DRAG = "left_click_drag"
    RIGHT_CLICK = "right_click"
    MIDDLE_CLICK = "middle_click"
    DOUBLE_CLICK = "double_click"
    SCREENSHOT = "screenshot"
    CURSOR_POSITION = "cursor_position"


COORDINATE_ACTIONS = frozenset({ComputerAction.MOUSE_MOVE, ComputerAction.LEFT_CLICK_DRAG})
TEXT_ACTIONS = frozenset({ComputerAction.KEY, ComputerAction.TYPE})


class ComputerToolCall(BaseModel):
    """Mouse, keyboard and screenshot actions against the browser."""

    name: Literal["computer"] = "computer"
    action: ComputerAction
    coordinate: Optional[List[int]] = Field(default=None, min_length=2, max_length=2)
    text: Optional[str] = None

    @model_validator(mode="after")
    def check_arguments(self) -> "ComputerToolCall":
        if self.action in COORDINATE_ACTIONS and self.coordinate is None:
            raise ValueError(f"coordinate is required for {self.action.value}")
        if self.action in TEXT_ACTIONS and not self.text:
            raise ValueError(f"text is required for {self.action.value}")
        return self

    @property
    def is_pointer_move(self) -> bool:
        return self.action == ComputerAction.MOUSE_MOVE and self.coordinate is not None

    def to_action(self) -> Dict[str, Any]:
        """Driver payload for this call."""
        action: Dict[str, Any] = {"action": self.action.value}
        if self.coordinate is not None:
            action["coordinate"] = list(self.coordinate)
        if self.text is not None:
            action["text"] = self.text
        return action


class BashToolCall(BaseModel):
    name: Literal["bash"] = "bash"
    command: str = Field(..., min_length=1)


class SleepToolCall(BaseModel):
    name: Literal["sleep"] = "sleep"
    duration: int = Field(..., ge=0, le=MAX_SLEEP_MS, description="Milliseconds")


class NavigateToolCall(BaseModel):
    name: Literal["navigate"] = "navigate"
    url: str

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid URL: {v}")
        return v


class RunCallbackToolCall(BaseModel):
    name: Literal["run_callback"] = "run_callback"


ToolCall = Annotated[
    Union[
        ComputerToolCall,
        BashToolCall,
        SleepToolCall,
        NavigateToolCall,
        RunCallbackToolCall,
    ],
    Field(discriminator="name"),
]

_tool_call_adapter = TypeAdapter(ToolCall)


class ToolDefinition(BaseModel):
    """A tool as advertised to the provider."""

    name: str
    description: str
    parameters: Dict[str, Any]

    def to_schema(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def build_tool_definitions(display_width: int = 1920, display_height: int = 1080) -> List[ToolDefinition]:
    """
    Build the fixed tool registry.

    Args:
        display_width: Browser viewport width advertised to the model
        display_height: Browser viewport height advertised to the model
    """
    return [
        ToolDefinition(
            name="computer",
            description=(
                "Control the browser with mouse and keyboard actions and take screenshots. "
                f"The display is {display_width}x{display_height} pixels; coordinates are "
                "[x, y] from the top-left corner."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": [action.value for action in ComputerAction],
                    },
                    "coordinate": {
                        "type": "array",
                        "items": {"type": "integer"},
                        "minItems": 2,
                        "maxItems": 2,
                        "description": "Required for mouse_move and left_click_drag",
                    },
                    "text": {
                        "type": "string",
                        "description": "Required for key and type",
                    },
                },
                "required": ["action"],
            },
        ),
        ToolDefinition(
            name="bash",
            description="Run a shell command and return its combined output",
            parameters={
                "type": "object",
                "properties": {"command": {"type": "string"}},
                "required": ["command"],
            },
        ),
        ToolDefinition(
            name="sleep",
            description="Pause test execution for specified duration",
            parameters={
                "type": "object",
                "properties": {
                    "duration": {
                        "type": "integer",
                        "minimum": 0,
                        "maximum": MAX_SLEEP_MS,
                        "description": "Duration in milliseconds",
                    }
                },
                "required": ["duration"],
            },
        ),
        ToolDefinition(
            name="navigate",
            description="Navigate the browser to a URL",
            parameters={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "The URL to navigate to"}
                },
                "required": ["url"],
            },
        ),
        ToolDefinition(
            name="run_callback",
            description="Run the callback function attached to the current test",
            parameters={"type": "object", "properties": {}},
        ),
    ]


TOOL_NAMES = frozenset(definition.name for definition in build_tool_definitions())


def parse_tool_call(call: ProviderToolCall) -> ToolCall:
    """
    Turn a raw provider tool call into its typed variant.

    Raises:
        UnknownToolError: The tool is not in the registry
        ToolExecutionError: The arguments do not match the tool's schema
    """
    if call.name not in TOOL_NAMES:
        raise UnknownToolError(call.name)
    try:
        return _tool_call_adapter.validate_python({**call.input, "name": call.name})
    except ValidationError as exc:
        raise ToolExecutionError(
            f"Invalid arguments for tool '{call.name}': {exc.errors(include_url=False)}",
            tool_name=call.name,
            cause=exc,
        ) from exc
