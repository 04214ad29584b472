"""
SDK for LLM Tracker.

Provides client wrappers that report usage automatically.
"""

from .openai_client import TrackedOpenAI

__all__ = ["TrackedOpenAI"]
