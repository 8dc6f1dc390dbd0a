"""Chat-completion client for the agents.

Wraps the ``openai`` SDK. Any OpenAI-compatible endpoint works, including
xAI's Grok API used for report URL suggestions.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import openai

from config.settings import Settings, get_settings
from observability.prometheus_metrics import record_llm_metrics
from .errors import LLMError

logger = logging.getLogger(__name__)

MAX_SUGGESTED_URLS = 200


@dataclass
class LLMResponse:
    """Message content of the first choice plus the full response."""
    content: str
    model: str
    raw_response: Dict[str, Any] = field(default_factory=dict)

    @property
    def raw_json(self) -> str:
        return json.dumps(self.raw_response, default=str)


def parse_json_content(content: str) -> Any:
    """Parse model output as JSON.

    Falls back to the outermost ``{...}`` when the model wrapped its JSON in
    prose or code fences.

    Raises:
        LLMError: If no JSON object can be recovered
    """
    try:
        return json.loads(content)
    except (TypeError, ValueError):
        pass

    start = content.find("{") if content else -1
    end = content.rfind("}") if content else -1
    if start >= 0 and end > start:
        try:
            return json.loads(content[start:end + 1])
        except ValueError as e:
            raise LLMError(f"Model returned invalid JSON: {e}")
    raise LLMError("Model returned no JSON object")


class LLMClient:
    """Thin wrapper around ``openai.OpenAI`` chat completions."""

    def __init__(self,
                 api_key: str,
                 model: str,
                 base_url: Optional[str] = None,
                 timeout: float = 120.0,
                 client: Optional[Any] = None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'LLMClient':
        settings = settings or get_settings()
        return cls(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout,
        )

    @classmethod
    def for_xai(cls, settings: Optional[Settings] = None) -> 'LLMClient':
        settings = settings or get_settings()
        return cls(
            api_key=settings.xai_api_key,
            model=settings.xai_model,
            base_url=settings.xai_base_url,
            timeout=settings.llm_timeout,
        )

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise LLMError("No API key configured for the language model")
            self._client = openai.OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    def complete(self,
                 messages: List[Dict[str, str]],
                 operation: str = "chat",
                 response_format: Optional[Dict[str, Any]] = None,
                 temperature: Optional[float] = None) -> LLMResponse:
        """Run one chat completion.

        Raises:
            LLMError: On missing credentials, API errors or empty content
        """
        kwargs: Dict[str, Any] = {'model': self.model, 'messages': messages}
        if response_format is not None:
            kwargs['response_format'] = response_format
        if temperature is not None:
            kwargs['temperature'] = temperature

        start = time.time()
        try:
            response = self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            record_llm_metrics(operation, time.time() - start, error=str(e))
            logger.error(f"LLM call {operation} failed: {e}")
            raise LLMError(f"LLM request failed: {e}")
        record_llm_metrics(operation, time.time() - start)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError("No content in LLM response")

        return LLMResponse(content=content, model=self.model, raw_response=response.model_dump())

    def complete_json(self,
                      messages: List[Dict[str, str]],
                      schema_name: str,
                      schema: Dict[str, Any],
                      operation: Optional[str] = None) -> LLMResponse:
        """Chat completion constrained to a strict JSON schema."""
        response_format = {
            'type': 'json_schema',
            'json_schema': {'name': schema_name, 'strict': True, 'schema': schema},
        }
        return self.complete(messages, operation=operation or schema_name, response_format=response_format)


SUGGEST_SYSTEM_PROMPT = "\n".join([
    "You are a web research assistant.",
    "Return ONLY strict JSON (no markdown, no prose).",
    'Output schema: {"urls": string[]}.',
    "Rules:",
    "- Include at most {max_urls} URLs",
    "- Prefer direct report/document URLs (PDF) or stable publication pages",
    "- Focus on Europe (NL/DE/FR/Nordics/EU) when relevant",
    "- Exclude social media, login pages, and irrelevant marketing",
])


def suggest_urls(query: str, max_urls: int = 25, client: Optional[LLMClient] = None,
                 settings: Optional[Settings] = None) -> List[str]:
    """Ask Grok for report URLs matching a free-text query.

    Args:
        query: What to look for
        max_urls: Upper bound on returned URLs, clamped to 1..200
        client: Client to use (an xAI client from settings if omitted)

    Raises:
        LLMError: If no xAI key is configured or the call fails
    """
    if client is None:
        client = LLMClient.for_xai(settings)
        if not client.api_key:
            raise LLMError("XAI_API_KEY is not set (needed for Grok discovery)")

    max_urls = min(max(int(max_urls), 1), MAX_SUGGESTED_URLS)
    messages = [
        {'role': 'system', 'content': SUGGEST_SYSTEM_PROMPT.replace("{max_urls}", str(max_urls))},
        {'role': 'user', 'content': "\n\n".join([
            "Find URLs for reports/publications that describe actual SDG-related projects/programs.",
            "Query:",
            query,
        ])},
    ]
    response = client.complete(messages, operation="suggest_urls", temperature=0.2)

    try:
        parsed = parse_json_content(response.content)
    except LLMError as e:
        logger.warning(f"Discarding unparseable URL suggestions: {e}")
        return []

    urls = parsed.get('urls') if isinstance(parsed, dict) else None
    if not isinstance(urls, list):
        return []
    urls = [url for url in urls if isinstance(url, str) and url.startswith("http")]
    logger.info(f"Grok suggested {len(urls)} URLs for query {query!r}")
    return urls[:max_urls]
