"""Versioned prompt templates for the agents."""

from .registry import PromptEntry, PromptRegistry, get_prompt_registry

__all__ = [
    'PromptEntry',
    'PromptRegistry',
    'get_prompt_registry'
]
