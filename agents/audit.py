"""Structured audit log for agent requests and responses.

Every model interaction, successful or not, is written as one JSON record
so prompts and raw responses can be traced after the fact.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from observability.logging import StructuredLogger

audit_logger = StructuredLogger("sdg.agents.audit", component="agent_audit")

CHALLENGE_EXTRACTOR = "challenge_extractor"
TECHNOLOGY_DISCOVERY = "technology_discovery"


@dataclass
class AgentLogEntry:
    agent: str
    operation: str
    model: str
    raw_prompt: str
    raw_response: str
    status: str
    error_message: Optional[str] = None
    user_id: Optional[int] = None
    challenge_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)


def create_success_log(agent: str, operation: str, model: str, raw_prompt: str, raw_response: str,
                       metadata: Optional[Dict[str, Any]] = None, **ids) -> AgentLogEntry:
    return AgentLogEntry(
        agent=agent,
        operation=operation,
        model=model,
        raw_prompt=raw_prompt,
        raw_response=raw_response,
        status="success",
        metadata=metadata or {},
        **ids,
    )


def create_error_log(agent: str, operation: str, model: str, raw_prompt: str, error_message: str,
                     metadata: Optional[Dict[str, Any]] = None, **ids) -> AgentLogEntry:
    return AgentLogEntry(
        agent=agent,
        operation=operation,
        model=model,
        raw_prompt=raw_prompt,
        raw_response="",
        status="error",
        error_message=error_message,
        metadata=metadata or {},
        **ids,
    )


def log_agent_interaction(entry: AgentLogEntry) -> None:
    """Emit one audit record as a JSON line, tagged with its agent and operation."""
    record_logger = audit_logger.bind(agent=entry.agent, operation=entry.operation)
    if entry.status == "error":
        record_logger.error(entry.to_json(), status=entry.status, user_id=entry.user_id)
    else:
        record_logger.info(entry.to_json(), status=entry.status, user_id=entry.user_id)
