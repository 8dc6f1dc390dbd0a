"""Exception hierarchy shared by pipelines, agents and the API."""


class SDGDiscoveryError(Exception):
    """Base class for application errors."""
    pass


class NotFoundError(SDGDiscoveryError):
    """Raised when a requested row does not exist."""
    pass


class DiscoveryError(SDGDiscoveryError):
    """Raised when endpoint discovery cannot run or the entry fetch fails."""
    pass


class IngestError(SDGDiscoveryError):
    """Raised when a document cannot be downloaded."""
    pass


class LLMError(SDGDiscoveryError):
    """Raised when the language model call fails."""
    pass


class AgentError(SDGDiscoveryError):
    """Raised when a model response cannot be turned into a result."""
    pass


class PromptNotFoundError(SDGDiscoveryError):
    """Raised when the prompt registry has no entry for a key."""
    pass


class SourceConfigError(SDGDiscoveryError):
    """Raised when a seed source file is invalid."""
    pass


class EndpointDisabledError(DiscoveryError):
    """Raised when discovery is requested for a disabled endpoint."""
    pass
