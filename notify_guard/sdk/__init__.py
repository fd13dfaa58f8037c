"""
SDK for Notify Guard.

Provides quota-guarded access to the AI provider.
"""

from .ai_client import AIProviderError, GuardedAIClient

__all__ = ["AIProviderError", "GuardedAIClient"]
