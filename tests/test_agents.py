"""Tests for the challenge extraction and technology discovery agents."""

import json
import logging

import pytest

from agents.challenge_extractor import ChallengeExtractorAgent
from agents.tech_discovery import TechDiscoveryAgent, format_budget, parse_cost_upper_bound
from conftest import FakeLLM
from observability.logging import JSONFormatter
from services.shared.errors import AgentError, LLMError
from services.shared.llm_client import parse_json_content


def challenge(title="Cold chain gaps", statement="Clinics lose vaccines during outages.", confidence=85, **extra):
    item = {
        'title': title,
        'statement': statement,
        'sdg_goals': "3",
        'geography': "Sub-Saharan Africa",
        'target_groups': None,
        'sectors': "Health",
        'confidence': confidence,
    }
    item.update(extra)
    return item


def audit_records(caplog):
    return [r for r in caplog.records if r.name == "sdg.agents.audit"]


def discovery_payload(*bands):
    return {
        'challenge_summary': "Vaccines spoil when power fails.",
        'core_functions': ["keep vaccines cold"],
        'underlying_principles': ["phase change"],
        'technology_paths': [
            {
                'path_name': f"Path {i}",
                'principles_used': ["phase change"],
                'technology_classes': ["passive cooling"],
                'why_plausible': "Simple materials",
                'estimated_cost_band_eur': band,
                'risks_and_unknowns': ["field durability"],
            }
            for i, band in enumerate(bands, start=1)
        ],
        'confidence': 0.7,
    }


@pytest.mark.parametrize("band, expected", [
    ("€500-€2,000", 2000),
    ("EUR 1k–3k", 3000),
    ("up to €800", 800),
    ("€1.5k - €4k", 4000),
    ("2.000-5.000 EUR", 5000),
    ("2000EUR", 2000),
    ("€2M", 2000000),
    ("€1-2 million", 2000000),
    ("EUR 1.5 Mio", 1500000),
    ("€300 thousand", 300000),
    ("€5k per unit", 5000),
    ("unknown", None),
    ("", None),
])
def test_parse_cost_upper_bound(band, expected):
    assert parse_cost_upper_bound(band) == expected


def test_format_budget():
    assert format_budget(10000) == "€10,000"


def test_parse_json_content_recovers_wrapped_json():
    assert parse_json_content('```json\n{"a": 1}\n```') == {'a': 1}
    with pytest.raises(LLMError):
        parse_json_content("no json here")


class TestChallengeExtractor:

    def test_filters_invalid_and_low_confidence(self, settings):
        llm = FakeLLM({'challenges': [
            challenge(),
            challenge(title="Weak", confidence=40),
            challenge(title="   "),
            challenge(confidence=150),
        ]})
        output = ChallengeExtractorAgent(llm, settings=settings).extract(
            "Report text", source_org="WHO", source_url="https://example.org/r")

        assert [c.title for c in output.result.challenges] == ["Cold chain gaps"]
        assert output.result.dropped_low_confidence == 1
        assert output.result.dropped_invalid == 2
        assert output.prompt_key == "challenge_extractor.extract_challenges"
        assert output.prompt_version == 1
        assert len(output.prompt_sha256) == 64
        assert output.raw_prompt.startswith("SYSTEM:\n")
        assert "\n\nUSER:\n" in output.raw_prompt
        assert "WHO" in output.raw_prompt

    def test_uses_strict_schema_and_placeholders(self, settings):
        llm = FakeLLM({'challenges': []})
        ChallengeExtractorAgent(llm, settings=settings).extract("Some text")

        call = llm.calls[0]
        assert call['schema_name'] == "challenge_extraction"
        user_message = call['messages'][1]['content']
        assert "Not specified" in user_message
        assert "Some text" in user_message

    def test_truncates_long_input(self, settings):
        settings.extraction_max_chars = 1000
        llm = FakeLLM({'challenges': []})
        ChallengeExtractorAgent(llm, settings=settings).extract("a" * 1500 + "TAIL")
        assert "TAIL" not in llm.calls[0]['messages'][1]['content']

    def test_response_without_list_raises_and_is_audited(self, settings, caplog):
        llm = FakeLLM({'items': []})
        with caplog.at_level(logging.ERROR, logger="sdg.agents.audit"):
            with pytest.raises(AgentError):
                ChallengeExtractorAgent(llm, settings=settings).extract("text", user_id=7)

        record = json.loads(audit_records(caplog)[-1].getMessage())
        assert record['status'] == "error"
        assert record['agent'] == "challenge_extractor"
        assert record['user_id'] == 7

    def test_success_is_audited(self, settings, caplog):
        llm = FakeLLM({'challenges': [challenge()]})
        with caplog.at_level(logging.INFO, logger="sdg.agents.audit"):
            ChallengeExtractorAgent(llm, settings=settings).extract("text")

        audit_record = audit_records(caplog)[-1]
        record = json.loads(audit_record.getMessage())
        assert record['status'] == "success"
        assert audit_record.ctx_agent == "challenge_extractor"
        assert audit_record.ctx_component == "agent_audit"
        assert record['metadata']['challenge_count'] == 1
        assert record['raw_response']

    def test_llm_error_propagates(self, settings):
        llm = FakeLLM(LLMError("rate limited"))
        with pytest.raises(LLMError, match="rate limited"):
            ChallengeExtractorAgent(llm, settings=settings).extract("text")

    def test_blank_text_is_rejected(self, settings):
        with pytest.raises(AgentError):
            ChallengeExtractorAgent(FakeLLM(), settings=settings).extract("   ")


class TestTechDiscovery:

    def test_flags_over_budget_paths(self, settings):
        llm = FakeLLM(discovery_payload("€500-€2,000", "€8k-€25k", "depends"))
        output = TechDiscoveryAgent(llm, settings=settings).discover(
            {'title': "Cold chain", 'statement': "Vaccines spoil."}, budget_eur=10000)

        paths = output.result.technology_paths
        assert len(paths) == 3
        assert (paths[0].estimated_max_cost_eur, paths[0].within_budget) == (2000, True)
        assert (paths[1].estimated_max_cost_eur, paths[1].within_budget) == (25000, False)
        assert (paths[2].estimated_max_cost_eur, paths[2].within_budget) == (None, None)
        assert output.result.budget_constraint_eur == 10000
        assert output.prompt_key == "tech_discovery.discover_paths"

    def test_budget_is_rendered_into_prompts(self, settings):
        llm = FakeLLM(discovery_payload())
        TechDiscoveryAgent(llm, settings=settings).discover(
            {'title': "T", 'statement': "S", 'geography': "Kenya"}, budget_eur=5000)

        system, user = (m['content'] for m in llm.calls[0]['messages'])
        assert "€5,000" in system
        assert "$budget_eur" not in system
        assert "Geography: Kenya" in user

    def test_default_budget(self, settings):
        llm = FakeLLM(discovery_payload())
        output = TechDiscoveryAgent(llm, settings=settings).discover({'title': "T", 'statement': "S"})
        assert output.result.budget_constraint_eur == settings.default_budget_eur

    def test_invalid_confidence_is_rejected(self, settings):
        payload = discovery_payload()
        payload['confidence'] = 3
        with pytest.raises(AgentError):
            TechDiscoveryAgent(FakeLLM(payload), settings=settings).discover({'title': "T", 'statement': "S"})

    def test_challenge_needs_title_and_statement(self, settings):
        with pytest.raises(AgentError):
            TechDiscoveryAgent(FakeLLM(), settings=settings).discover({'title': "T"})


def test_million_band_is_flagged_over_budget(settings):
    llm = FakeLLM(discovery_payload("€1-2 million"))
    output = TechDiscoveryAgent(llm, settings=settings).discover({'title': "T", 'statement': "S"}, budget_eur=10000)

    path = output.result.technology_paths[0]
    assert path.estimated_max_cost_eur == 2000000
    assert path.within_budget is False


def test_audit_context_reaches_json_log_lines(settings, caplog):
    llm = FakeLLM({'challenges': [challenge()]})
    with caplog.at_level(logging.INFO, logger="sdg.agents.audit"):
        ChallengeExtractorAgent(llm, settings=settings).extract("text", user_id=3)

    line = json.loads(JSONFormatter().format(audit_records(caplog)[-1]))
    assert line['logger'] == "sdg.agents.audit"
    assert line['ctx_operation'] == "extract_challenges"
    assert line['ctx_user_id'] == 3
    assert json.loads(line['message'])['agent'] == "challenge_extractor"
