"""LLM agents for challenge extraction and technology discovery."""

from .base import AgentOutput
from .challenge_extractor import ChallengeExtractorAgent, ChallengeExtractionResult, ExtractedChallenge
from .tech_discovery import TechDiscoveryAgent, TechDiscoveryResult, TechnologyPath, parse_cost_upper_bound

__all__ = [
    'AgentOutput',
    'ChallengeExtractorAgent',
    'ChallengeExtractionResult',
    'ExtractedChallenge',
    'TechDiscoveryAgent',
    'TechDiscoveryResult',
    'TechnologyPath',
    'parse_cost_upper_bound'
]
