"""
AI Auditor

Security analysis of captured HTTP request/response pairs with remote
(or local) LLM providers.

Pipeline:
- Chunker: split a payload to fit the token budget next to the prompt
- RateLimiter: per-provider sliding window admission
- ProviderDispatcher: parallel worker pool or single serial worker per provider
- RetryController: bounded retries, linear backoff, credential rotation
- FindingsAggregator: order-independent, duplicate-safe merging

Hosts build an AnalysisRequest through AuditOrchestrator.build_request()
and await AuditOrchestrator.analyze(); accepted findings are delivered to
a FindingSink.
"""

__version__ = "1.0.0"

from .chunking import chunk_content, estimate_tokens
from .common_types import AnalysisRequest, Chunk, Confidence, Finding, Severity, Task, TaskState
from .config import AuditorConfig, get_config, load_credentials_from_env
from .credentials import CredentialPool
from .dispatcher import ProviderDispatcher
from .errors import (
    AuditorError,
    ConfigurationError,
    CredentialError,
    FatalError,
    MalformedResponseError,
    QuotaExhaustedError,
    TransientProviderError,
)
from .llm_client import HttpAnalyzer
from .orchestrator import AuditOrchestrator, AuditReport
from .providers import Provider, resolve_provider, select_default_model
from .rate_limiter import RateLimiter
from .result_aggregation import CollectingSink, FindingsAggregator
from .retry import RetryController, TaskOutcome

__all__ = [
    "AuditOrchestrator",
    "AuditReport",
    "AuditorConfig",
    "get_config",
    "load_credentials_from_env",
    "AnalysisRequest",
    "Chunk",
    "Task",
    "TaskState",
    "Finding",
    "Severity",
    "Confidence",
    "chunk_content",
    "estimate_tokens",
    "CredentialPool",
    "RateLimiter",
    "ProviderDispatcher",
    "RetryController",
    "TaskOutcome",
    "FindingsAggregator",
    "CollectingSink",
    "HttpAnalyzer",
    "Provider",
    "resolve_provider",
    "select_default_model",
    "AuditorError",
    "ConfigurationError",
    "CredentialError",
    "FatalError",
    "MalformedResponseError",
    "QuotaExhaustedError",
    "TransientProviderError",
]
