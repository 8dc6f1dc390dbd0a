"""Shared pieces of the LLM agents."""

from dataclasses import dataclass
from typing import Any, Dict, Generic, TypeVar

from pydantic import BaseModel

from prompts.registry import PromptEntry

ResultT = TypeVar("ResultT", bound=BaseModel)


@dataclass
class AgentOutput(Generic[ResultT]):
    """Validated result of one agent call with everything needed to audit it."""
    result: ResultT
    raw_prompt: str
    raw_response: str
    prompt_key: str
    prompt_version: int
    prompt_sha256: str
    model: str

    def prompt_identity(self) -> Dict[str, Any]:
        return {
            'prompt_key': self.prompt_key,
            'prompt_version': self.prompt_version,
            'prompt_sha256': self.prompt_sha256,
        }


def format_raw_prompt(system_prompt: str, user_prompt: str) -> str:
    return f"SYSTEM:\n{system_prompt}\n\nUSER:\n{user_prompt}"


def build_messages(system_prompt: str, user_prompt: str):
    return [
        {'role': 'system', 'content': system_prompt},
        {'role': 'user', 'content': user_prompt},
    ]


def prompt_fields(entry: PromptEntry) -> Dict[str, Any]:
    return {
        'prompt_key': entry.key,
        'prompt_version': entry.version,
        'prompt_sha256': entry.sha256,
    }
