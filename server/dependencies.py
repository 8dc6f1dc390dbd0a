"""FastAPI dependencies for outbound clients.

Tests override these through ``app.dependency_overrides``.
"""

from typing import Iterator

import requests

from config.settings import get_settings
from prompts.registry import PromptRegistry, get_prompt_registry
from services.shared.llm_client import LLMClient


def get_http_session() -> Iterator[requests.Session]:
    session = requests.Session()
    try:
        yield session
    finally:
        session.close()


def get_llm_client() -> LLMClient:
    return LLMClient.from_settings(get_settings())


def get_xai_client() -> LLMClient:
    return LLMClient.for_xai(get_settings())


def get_registry() -> PromptRegistry:
    return get_prompt_registry()
