"""
Provider registry.

A Provider is resolved once from the model name when a request is built;
everything downstream (scheduling class, rotation support, rate limits,
wire format) hangs off the enum member instead of re-deriving it from
strings.
"""

from enum import Enum

from .errors import ConfigurationError


class SchedulingClass(Enum):
    PARALLEL = "parallel"
    SERIAL = "serial"


class Provider(Enum):
    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    LOCAL = "local"

    @property
    def scheduling(self) -> SchedulingClass:
        # Local models run on the analyst's machine; one request at a time
        if self is Provider.LOCAL:
            return SchedulingClass.SERIAL
        return SchedulingClass.PARALLEL

    @property
    def supports_rotation(self) -> bool:
        return self is Provider.GEMINI

    @classmethod
    def from_id(cls, provider_id: str) -> "Provider":
        try:
            return cls(provider_id.strip().lower())
        except (ValueError, AttributeError):
            raise ConfigurationError(f"Unsupported provider: {provider_id!r}") from None


# Default (max_requests, window_seconds) per provider
DEFAULT_RATE_LIMITS: dict[Provider, tuple[int, float]] = {
    Provider.OPENAI: (50, 60.0),
    Provider.CLAUDE: (100, 60.0),
    Provider.GEMINI: (60, 60.0),
    Provider.LOCAL: (30, 60.0),
}

MODEL_MAPPING: dict[str, Provider] = {
    "gpt-4o": Provider.OPENAI,
    "gpt-4o-mini": Provider.OPENAI,
    "o1-preview": Provider.OPENAI,
    "o1-mini": Provider.OPENAI,
    "claude-3-opus-latest": Provider.CLAUDE,
    "claude-3-5-sonnet-latest": Provider.CLAUDE,
    "claude-3-5-haiku-latest": Provider.CLAUDE,
    "gemini-1.5-pro": Provider.GEMINI,
    "gemini-1.5-flash": Provider.GEMINI,
    "local-llm": Provider.LOCAL,
}

# Order matters: first provider with a credential wins
DEFAULT_MODELS: list[tuple[Provider, str]] = [
    (Provider.CLAUDE, "claude-3-5-haiku-latest"),
    (Provider.OPENAI, "gpt-4o-mini"),
    (Provider.GEMINI, "gemini-1.5-flash"),
]


def resolve_provider(model: str) -> Provider:
    """Resolve the provider serving a model name."""
    provider = MODEL_MAPPING.get(model)
    if provider is None:
        raise ConfigurationError(f"Unsupported model: {model!r}", model=model)
    return provider


def select_default_model(credentials: dict[Provider, list[str]]) -> str:
    """
    Pick a model when the user asked for "Default".

    Args:
        credentials: Configured credentials per provider

    Returns:
        The default model of the first provider that has a credential
    """
    for provider, model in DEFAULT_MODELS:
        if any(c.strip() for c in credentials.get(provider, [])):
            return model
    raise ConfigurationError("No API key configured for any provider")
