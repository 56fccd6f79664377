"""
Test orchestration.
"""

from echotest.orchestration.orchestrator import RunContext, TestOrchestrator

__all__ = ["RunContext", "TestOrchestrator"]
