"""
Core interfaces and abstract base classes for the echotest engine.

These are the seams to external collaborators: the browser driver and the
language-model provider.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from echotest.core.types import ConversationMessage, ProviderResponse, ToolResult


class BrowserDriver(ABC):
    """Abstract base class for browser automation drivers."""

    @abstractmethod
    async def execute(self, action: Dict[str, Any]) -> ToolResult:
        """
        Execute a computer action.

        Args:
            action: Action payload, e.g. ``{"action": "left_click"}`` or
                ``{"action": "mouse_move", "coordinate": [x, y]}``

        Returns:
            Text output and/or a base64 screenshot
        """
        pass

    @abstractmethod
    async def describe_element_at(self, x: int, y: int) -> str:
        """Return a human-readable description of the element under (x, y)."""
        pass

    @abstractmethod
    async def navigate(self, url: str) -> ToolResult:
        """Open a URL."""
        pass


class LanguageModelProvider(ABC):
    """Abstract base class for tool-calling language-model providers."""

    @abstractmethod
    async def complete(
        self,
        system: str,
        history: Sequence[ConversationMessage],
        tools: List[Dict[str, Any]],
        max_tokens: int,
    ) -> ProviderResponse:
        """
        Run one generation step over the full history.

        Args:
            system: Fixed system instruction
            history: Conversation so far
            tools: Tool definitions as name/description/parameters dicts
            max_tokens: Token budget for this call

        Returns:
            Normalised provider response

        Raises:
            ProviderError: For provider or network failures
            RateLimitError: When the provider asks to slow down
        """
        pass

