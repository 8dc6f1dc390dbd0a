"""Technology discovery agent.

Reasons from a challenge to core functions, underlying principles and
technology classes, and proposes budget-bounded technology paths.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from config.settings import Settings, get_settings
from prompts.registry import PromptRegistry, get_prompt_registry
from services.shared.errors import AgentError, LLMError
from services.shared.llm_client import LLMClient, parse_json_content
from .audit import TECHNOLOGY_DISCOVERY, create_error_log, create_success_log, log_agent_interaction
from .base import AgentOutput, build_messages, format_raw_prompt, prompt_fields

logger = logging.getLogger(__name__)

PROMPT_KEY = "tech_discovery.discover_paths"
SCHEMA_NAME = "tech_discovery"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

TECH_DISCOVERY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "challenge_summary": {"type": "string", "description": "Brief restatement of the challenge in 1-2 sentences"},
        "core_functions": {**_STRING_LIST,
                           "description": "Core functions that must be performed to address the challenge"},
        "underlying_principles": {**_STRING_LIST,
                                  "description": "Physical, chemical, or mechanical principles that enable these functions"},
        "technology_paths": {
            "type": "array",
            "description": "2-3 plausible technology paths under the budget",
            "items": {
                "type": "object",
                "properties": {
                    "path_name": {"type": "string", "description": "Descriptive name for this technology path"},
                    "principles_used": {**_STRING_LIST,
                                        "description": "Which underlying principles this path leverages"},
                    "technology_classes": {**_STRING_LIST,
                                           "description": "Technology classes (NOT brands or products)"},
                    "why_plausible": {"type": "string",
                                      "description": "Why this path is feasible under the constraints"},
                    "estimated_cost_band_eur": {"type": "string",
                                                "description": "Cost range in euros (e.g., '€500-€2,000')"},
                    "risks_and_unknowns": {**_STRING_LIST,
                                           "description": "Key risks, assumptions, or unknowns for this path"},
                },
                "required": ["path_name", "principles_used", "technology_classes", "why_plausible",
                             "estimated_cost_band_eur", "risks_and_unknowns"],
                "additionalProperties": False,
            },
        },
        "confidence": {"type": "number", "description": "Confidence score 0-1 for the overall discovery"},
    },
    "required": ["challenge_summary", "core_functions", "underlying_principles", "technology_paths", "confidence"],
    "additionalProperties": False,
}

# "2,000", "1.5k", "3 k", "2.000" (dotted thousands), "2 million"
_AMOUNT_RE = re.compile(r"(\d[\d,.]*)\s*([a-zA-Z]+)?")
_DOTTED_THOUSANDS_RE = re.compile(r"^\d{1,3}(\.\d{3})+$")
_MAGNITUDES = {
    'k': 1000,
    'thousand': 1000,
    'm': 1000000,
    'mio': 1000000,
    'mn': 1000000,
    'million': 1000000,
    'millions': 1000000,
    'bn': 1000000000,
    'billion': 1000000000,
}


def parse_cost_upper_bound(cost_band: Optional[str]) -> Optional[int]:
    """Upper bound of a cost band such as ``€500-€2,000`` or ``EUR 1k–3k``.

    Returns None when the band holds no amount.
    """
    if not cost_band:
        return None

    amounts = []
    for number, word in _AMOUNT_RE.findall(cost_band):
        number = number.rstrip(".,")
        if not number:
            continue
        if _DOTTED_THOUSANDS_RE.match(number):
            number = number.replace(".", "")
        number = number.replace(",", "")
        try:
            value = float(number)
        except ValueError:
            continue
        # Currency codes and other words leave the amount as is
        value *= _MAGNITUDES.get(word.lower(), 1)
        amounts.append(value)

    if not amounts:
        return None
    return int(round(max(amounts)))


def format_budget(budget_eur: int) -> str:
    return f"€{budget_eur:,}"


class TechnologyPath(BaseModel):
    path_name: str = Field(min_length=1)
    principles_used: List[str] = Field(default_factory=list)
    technology_classes: List[str] = Field(default_factory=list)
    why_plausible: str = ""
    estimated_cost_band_eur: str = ""
    risks_and_unknowns: List[str] = Field(default_factory=list)
    estimated_max_cost_eur: Optional[int] = None
    within_budget: Optional[bool] = None


class TechDiscoveryResult(BaseModel):
    challenge_summary: str = ""
    core_functions: List[str] = Field(default_factory=list)
    underlying_principles: List[str] = Field(default_factory=list)
    technology_paths: List[TechnologyPath] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0, le=1)
    budget_constraint_eur: int = 0


def _field(challenge: Any, name: str) -> Optional[str]:
    if isinstance(challenge, dict):
        return challenge.get(name)
    return getattr(challenge, name, None)


def build_challenge_context(challenge: Any) -> str:
    """Optional challenge attributes, one per line."""
    lines = []
    for label, name in (("SDG Goals", "sdg_goals"), ("Geography", "geography"),
                        ("Target Groups", "target_groups"), ("Sectors", "sectors")):
        value = _field(challenge, name)
        if value:
            lines.append(f"{label}: {value}")
    return "\n".join(lines)


class TechDiscoveryAgent:
    """Proposes technology paths for a challenge within a euro budget."""

    def __init__(self, llm: LLMClient,
                 registry: Optional[PromptRegistry] = None,
                 settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.llm = llm
        self.registry = registry or get_prompt_registry()
        self.default_budget_eur = settings.default_budget_eur

    def _parse(self, content: str, budget_eur: int) -> TechDiscoveryResult:
        data = parse_json_content(content)
        if not isinstance(data, dict):
            raise AgentError("Model response is not a JSON object")
        try:
            result = TechDiscoveryResult.model_validate({**data, 'budget_constraint_eur': budget_eur})
        except ValidationError as e:
            raise AgentError(f"Invalid technology discovery response: {e.errors()[0].get('msg')}")

        for path in result.technology_paths:
            path.estimated_max_cost_eur = parse_cost_upper_bound(path.estimated_cost_band_eur)
            if path.estimated_max_cost_eur is None:
                logger.warning(f"Path {path.path_name!r} has no parseable cost band: "
                               f"{path.estimated_cost_band_eur!r}")
                continue
            path.within_budget = path.estimated_max_cost_eur <= budget_eur
            if not path.within_budget:
                logger.warning(f"Path {path.path_name!r} exceeds budget constraint "
                               f"({path.estimated_cost_band_eur} > {format_budget(budget_eur)})")
        return result

    def discover(self, challenge: Any,
                 budget_eur: Optional[int] = None,
                 user_id: Optional[int] = None,
                 challenge_id: Optional[int] = None) -> AgentOutput[TechDiscoveryResult]:
        """Discover technology paths for a challenge.

        Args:
            challenge: Challenge row or dict with title, statement and optional context
            budget_eur: Budget constraint in euros (settings default if omitted)
            user_id: Requesting user, for the audit log
            challenge_id: Challenge id, for the audit log

        Returns:
            AgentOutput wrapping a TechDiscoveryResult; over-budget paths are
            kept and flagged with ``within_budget=False``

        Raises:
            LLMError: If the model call fails
            AgentError: If the response does not match the schema
        """
        budget_eur = budget_eur or self.default_budget_eur
        title = _field(challenge, "title")
        statement = _field(challenge, "statement")
        if not title or not statement:
            raise AgentError("Challenge needs a title and a statement")

        entry = self.registry.get_entry(PROMPT_KEY)
        system_prompt = entry.render_system(budget_eur=format_budget(budget_eur))
        user_prompt = entry.render_user(
            title=title,
            statement=statement,
            context=build_challenge_context(challenge),
            budget_eur=format_budget(budget_eur),
        )
        raw_prompt = format_raw_prompt(system_prompt, user_prompt)
        metadata = {**prompt_fields(entry), 'budget_constraint_eur': budget_eur}
        ids = {'user_id': user_id, 'challenge_id': challenge_id}

        try:
            response = self.llm.complete_json(
                build_messages(system_prompt, user_prompt),
                schema_name=SCHEMA_NAME,
                schema=TECH_DISCOVERY_SCHEMA,
                operation=entry.operation,
            )
            result = self._parse(response.content, budget_eur)
        except (LLMError, AgentError) as e:
            log_agent_interaction(create_error_log(
                TECHNOLOGY_DISCOVERY, entry.operation, self.llm.model, raw_prompt, str(e),
                metadata=metadata, **ids,
            ))
            raise

        metadata.update(
            path_count=len(result.technology_paths),
            over_budget=sum(1 for path in result.technology_paths if path.within_budget is False),
        )
        log_agent_interaction(create_success_log(
            TECHNOLOGY_DISCOVERY, entry.operation, response.model, raw_prompt, response.raw_json,
            metadata=metadata, **ids,
        ))

        return AgentOutput(
            result=result,
            raw_prompt=raw_prompt,
            raw_response=response.raw_json,
            prompt_key=entry.key,
            prompt_version=entry.version,
            prompt_sha256=entry.sha256,
            model=response.model,
        )
