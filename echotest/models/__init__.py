"""
Language-model providers.
"""

from echotest.models.openai_provider import OpenAIProvider, map_finish_reason, to_chat_messages

__all__ = ["OpenAIProvider", "map_finish_reason", "to_chat_messages"]
