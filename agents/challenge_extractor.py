"""Challenge extraction agent.

Turns SDG-related document text into solution-free challenge statements
with one structured-output model call.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from config.settings import Settings, get_settings
from prompts.registry import PromptRegistry, get_prompt_registry
from services.shared.errors import AgentError, LLMError
from services.shared.llm_client import LLMClient, parse_json_content
from .audit import CHALLENGE_EXTRACTOR, create_error_log, create_success_log, log_agent_interaction
from .base import AgentOutput, build_messages, format_raw_prompt, prompt_fields

logger = logging.getLogger(__name__)

PROMPT_KEY = "challenge_extractor.extract_challenges"
SCHEMA_NAME = "challenge_extraction"
NOT_SPECIFIED = "Not specified"

# Strict structured outputs need every property listed as required;
# optional fields are expressed as nullable instead.
CHALLENGE_EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "challenges": {
            "type": "array",
            "description": "Extracted challenges from the document",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Concise title for the challenge (max 100 chars)"},
                    "statement": {"type": "string", "description": "Clear problem statement without solutions"},
                    "sdg_goals": {"type": ["string", "null"],
                                  "description": "Relevant SDG goals (comma-separated numbers, e.g., '6,13')"},
                    "geography": {"type": ["string", "null"], "description": "Geographic location or region"},
                    "target_groups": {"type": ["string", "null"],
                                      "description": "Target populations or groups affected"},
                    "sectors": {"type": ["string", "null"],
                                "description": "Relevant sectors (e.g., 'Water', 'Agriculture')"},
                    "confidence": {"type": "number", "description": "Confidence score 0-100 for this extraction"},
                },
                "required": ["title", "statement", "sdg_goals", "geography", "target_groups", "sectors",
                             "confidence"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["challenges"],
    "additionalProperties": False,
}


class ExtractedChallenge(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    statement: str = Field(min_length=1)
    sdg_goals: Optional[str] = None
    geography: Optional[str] = None
    target_groups: Optional[str] = None
    sectors: Optional[str] = None
    confidence: float = Field(ge=0, le=100)

    @field_validator("title", "statement")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class ChallengeExtractionResult(BaseModel):
    challenges: List[ExtractedChallenge] = Field(default_factory=list)
    dropped_invalid: int = 0
    dropped_low_confidence: int = 0


class ChallengeExtractorAgent:
    """Extracts challenges from text using the registry prompt."""

    def __init__(self, llm: LLMClient,
                 registry: Optional[PromptRegistry] = None,
                 min_confidence: Optional[float] = None,
                 settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.llm = llm
        self.registry = registry or get_prompt_registry()
        self.min_confidence = min_confidence if min_confidence is not None else settings.challenge_min_confidence
        self.max_chars = settings.extraction_max_chars

    def _parse(self, content: str) -> ChallengeExtractionResult:
        data = parse_json_content(content)
        if not isinstance(data, dict) or not isinstance(data.get("challenges"), list):
            raise AgentError("Model response has no challenges list")

        result = ChallengeExtractionResult()
        for item in data["challenges"]:
            try:
                challenge = ExtractedChallenge.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Dropping invalid challenge: {e.errors()[0].get('msg')}")
                result.dropped_invalid += 1
                continue
            if challenge.confidence < self.min_confidence:
                result.dropped_low_confidence += 1
                continue
            result.challenges.append(challenge)
        return result

    def extract(self, text: str,
                source_org: Optional[str] = None,
                source_url: Optional[str] = None,
                user_id: Optional[int] = None) -> AgentOutput[ChallengeExtractionResult]:
        """Extract challenges from document text.

        Args:
            text: Document text; longer input is cut to the configured limit
            source_org: Organization that published the text
            source_url: Where the text came from
            user_id: Requesting user, for the audit log

        Returns:
            AgentOutput wrapping a ChallengeExtractionResult

        Raises:
            LLMError: If the model call fails
            AgentError: If the response is not a challenge list
        """
        if not text or not text.strip():
            raise AgentError("No text to extract challenges from")
        if len(text) > self.max_chars:
            logger.info(f"Truncating extraction input from {len(text)} to {self.max_chars} chars")
            text = text[:self.max_chars]

        entry = self.registry.get_entry(PROMPT_KEY)
        system_prompt = entry.render_system()
        user_prompt = entry.render_user(
            source_org=source_org or NOT_SPECIFIED,
            source_url=source_url or NOT_SPECIFIED,
            text=text,
        )
        raw_prompt = format_raw_prompt(system_prompt, user_prompt)
        metadata = {**prompt_fields(entry), 'source_org': source_org, 'source_url': source_url}

        try:
            response = self.llm.complete_json(
                build_messages(system_prompt, user_prompt),
                schema_name=SCHEMA_NAME,
                schema=CHALLENGE_EXTRACTION_SCHEMA,
                operation=entry.operation,
            )
            result = self._parse(response.content)
        except (LLMError, AgentError) as e:
            log_agent_interaction(create_error_log(
                CHALLENGE_EXTRACTOR, entry.operation, self.llm.model, raw_prompt, str(e),
                metadata=metadata, user_id=user_id,
            ))
            raise

        metadata.update(
            challenge_count=len(result.challenges),
            dropped_invalid=result.dropped_invalid,
            dropped_low_confidence=result.dropped_low_confidence,
        )
        log_agent_interaction(create_success_log(
            CHALLENGE_EXTRACTOR, entry.operation, response.model, raw_prompt, response.raw_json,
            metadata=metadata, user_id=user_id,
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
