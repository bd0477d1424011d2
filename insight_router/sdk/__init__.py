"""
SDK for Insight Router.

Provides the OpenAI-backed provider used for cloud resolutions.
"""

from .openai_client import OpenAIInsightProvider

__all__ = ["OpenAIInsightProvider"]
