"""
AI provider selection.
The variant is chosen once per process from AI_PROVIDER; there is no hot-swapping.
"""
import logging
import threading
from typing import Optional

from hirefit.core.config import settings
from hirefit.services.ai.base import AIProvider
from hirefit.services.ai.mock import MockAIProvider
from hirefit.services.ai.openrouter import OpenRouterAIProvider

logger = logging.getLogger(__name__)

_provider: Optional[AIProvider] = None
_lock = threading.Lock()


def create_ai_provider(name: Optional[str] = None) -> AIProvider:
    name = (name or settings.ai.provider).lower()

    if name == "openrouter":
        logger.info("Initializing OpenRouter AI Provider")
        return OpenRouterAIProvider()

    if name != "mock":
        logger.warning(f"Unknown AI_PROVIDER '{name}', falling back to mock provider")
    logger.info("Initializing Mock AI Provider")
    return MockAIProvider(latency_ms=settings.ai.mock_latency_ms)


def get_ai_provider() -> AIProvider:
    global _provider
    if _provider is None:
        with _lock:
            if _provider is None:
                _provider = create_ai_provider()
    return _provider


__all__ = ["AIProvider", "MockAIProvider", "OpenRouterAIProvider", "create_ai_provider", "get_ai_provider"]
