"""
Agent conversation loop and verdict parsing.
"""

from echotest.agents.conversation import ConversationLoop
from echotest.agents.verdict import parse_verdict

__all__ = ["ConversationLoop", "parse_verdict"]
