"""
Configuration for the AI Auditor pipeline.

Environment Variables:
- AI_AUDITOR_TOKEN_BUDGET: Max estimated tokens (prompt + chunk) per call (default: 8192)
- AI_AUDITOR_MAX_RETRIES: Attempts per chunk (default: 3)
- AI_AUDITOR_RETRY_DELAY: Base delay in seconds for linear backoff (default: 1.0)
- AI_AUDITOR_BATCH_SIZE: Chunks of one request in flight at once, 1-30 (default: 5)
- AI_AUDITOR_LOCAL_ENDPOINT: URL of a locally hosted model
- OPENAI_API_KEY / ANTHROPIC_API_KEY / LOCAL_LLM_API_KEY: provider credentials
- GEMINI_API_KEYS: comma separated Gemini keys, rotated on quota errors

A config object is a snapshot: in-flight requests keep the snapshot they
were built with, and the with_* helpers return a new snapshot instead of
mutating shared state.
"""

import os
from dataclasses import dataclass, field, replace

from dotenv import load_dotenv

from .prompts import DEFAULT_PROMPT_TEMPLATE
from .providers import DEFAULT_RATE_LIMITS, Provider

load_dotenv()


MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 30


@dataclass(frozen=True)
class AuditorConfig:
    """Immutable configuration snapshot for the audit pipeline."""

    # Chunking
    token_budget: int = field(
        default_factory=lambda: int(os.getenv("AI_AUDITOR_TOKEN_BUDGET", "8192"))
    )
    prompt_template: str = field(
        default_factory=lambda: os.getenv("AI_AUDITOR_PROMPT", "") or DEFAULT_PROMPT_TEMPLATE
    )

    # Retry Configuration
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("AI_AUDITOR_MAX_RETRIES", "3"))
    )
    retry_delay_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_AUDITOR_RETRY_DELAY", "1.0"))
    )

    # Concurrency
    batch_size: int = field(
        default_factory=lambda: int(os.getenv("AI_AUDITOR_BATCH_SIZE", "5"))
    )
    core_workers: int = field(
        default_factory=lambda: int(os.getenv("AI_AUDITOR_CORE_WORKERS", "3"))
    )
    max_workers: int = field(
        default_factory=lambda: int(os.getenv("AI_AUDITOR_MAX_WORKERS", "5"))
    )
    queue_capacity: int = field(
        default_factory=lambda: int(os.getenv("AI_AUDITOR_QUEUE_CAPACITY", "100"))
    )
    inter_batch_delay_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_AUDITOR_INTER_BATCH_DELAY", "1.0"))
    )

    # Timeouts
    request_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_AUDITOR_REQUEST_TIMEOUT", "30"))
    )
    task_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_AUDITOR_TASK_TIMEOUT", "300"))
    )
    admission_poll_interval: float = field(
        default_factory=lambda: float(os.getenv("AI_AUDITOR_ADMISSION_POLL", "1.0"))
    )
    shutdown_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_AUDITOR_SHUTDOWN_TIMEOUT", "30"))
    )

    # (max_requests, window_seconds) per provider
    rate_limits: dict[Provider, tuple[int, float]] = field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS)
    )

    local_endpoint: str = field(
        default_factory=lambda: os.getenv("AI_AUDITOR_LOCAL_ENDPOINT", "")
    )

    def rate_limit_for(self, provider: Provider) -> tuple[int, float]:
        return self.rate_limits.get(provider, DEFAULT_RATE_LIMITS[provider])

    def with_token_budget(self, token_budget: int) -> "AuditorConfig":
        return replace(self, token_budget=token_budget)

    def with_batch_size(self, batch_size: int) -> "AuditorConfig":
        return replace(self, batch_size=batch_size)

    def with_rate_limits(
        self,
        provider: Provider,
        max_requests: int,
        window_seconds: float
    ) -> "AuditorConfig":
        limits = dict(self.rate_limits)
        limits[provider] = (max_requests, window_seconds)
        return replace(self, rate_limits=limits)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.token_budget <= 0:
            errors.append("token_budget must be positive")

        if self.max_retries < 1:
            errors.append("max_retries must be at least 1")

        if self.retry_delay_seconds < 0:
            errors.append("retry_delay_seconds must not be negative")

        if not MIN_BATCH_SIZE <= self.batch_size <= MAX_BATCH_SIZE:
            errors.append(f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}")

        if self.core_workers < 1 or self.max_workers < self.core_workers:
            errors.append("worker pool needs 1 <= core_workers <= max_workers")

        if self.queue_capacity < 1:
            errors.append("queue_capacity must be at least 1")

        if self.admission_poll_interval <= 0:
            errors.append("admission_poll_interval must be positive")

        if self.task_timeout_seconds <= 0 or self.request_timeout_seconds <= 0:
            errors.append("timeouts must be positive")

        for provider, (max_requests, window) in self.rate_limits.items():
            if max_requests <= 0 or window <= 0:
                errors.append(f"rate limit for {provider.value} must be positive")

        return errors


def load_credentials_from_env() -> dict[Provider, list[str]]:
    """Read provider credentials from the environment."""

    def split_keys(raw: str) -> list[str]:
        return [k.strip() for k in raw.split(",") if k.strip()]

    credentials = {
        Provider.OPENAI: split_keys(os.getenv("OPENAI_API_KEY", "")),
        Provider.CLAUDE: split_keys(os.getenv("ANTHROPIC_API_KEY", "")),
        Provider.GEMINI: split_keys(
            os.getenv("GEMINI_API_KEYS", "") or os.getenv("GEMINI_API_KEY", "")
        ),
        Provider.LOCAL: split_keys(os.getenv("LOCAL_LLM_API_KEY", "")),
    }
    return {provider: keys for provider, keys in credentials.items() if keys}


def get_config() -> AuditorConfig:
    """Get a configuration snapshot from the environment."""
    return AuditorConfig()
