"""
Audit orchestrator.

Entry point for hosts: build an AnalysisRequest, then analyze() it.

Processing per request:
1. Chunk content to fit the token budget next to the prompt
2. Create one Task per chunk and submit all of them at once, capped by
   the request's batch-size semaphore
3. Each task is admitted by the provider's rate limiter and executed by
   the RetryController inside the provider's execution context
4. Outcomes are aggregated as they complete; duplicates are dropped and
   new findings go to the sink

Chunk failures never abort sibling chunks. Only a request where every
chunk failed is flagged (all_failed) and logged at ERROR. Cancelling
analyze() cancels the request's unfinished chunks and waits for them.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from .chunking import chunk_content, estimate_tokens
from .common_types import AnalysisRequest, Finding, Task
from .config import AuditorConfig, MAX_BATCH_SIZE, MIN_BATCH_SIZE
from .credentials import CredentialPool
from .dispatcher import ProviderDispatcher
from .errors import AuditorError, ConfigurationError, FatalError
from .progress_callbacks import ProgressCallback, ProgressTracker
from .providers import Provider, resolve_provider
from .rate_limiter import RateLimiter
from .result_aggregation import CollectingSink, FindingSink, FindingsAggregator
from .retry import Analyzer, RetryController, TaskOutcome

logger = logging.getLogger(__name__)


@dataclass
class ChunkError:
    """A failed chunk with diagnostic context."""
    chunk_index: int
    provider: str
    model: str
    attempts: int
    error_type: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_index": self.chunk_index,
            "provider": self.provider,
            "model": self.model,
            "attempts": self.attempts,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass
class AuditReport:
    """Summary of one analyzed request."""
    request_id: str
    target: str
    provider: str
    model: str
    total_chunks: int = 0
    succeeded_chunks: int = 0
    failed_chunks: int = 0
    malformed_chunks: int = 0
    duplicate_findings: int = 0
    findings: list[Finding] = field(default_factory=list)
    errors: list[ChunkError] = field(default_factory=list)
    processing_time_ms: int = 0

    @property
    def accepted_findings(self) -> int:
        return len(self.findings)

    @property
    def all_failed(self) -> bool:
        return self.total_chunks > 0 and self.failed_chunks == self.total_chunks

    def summary(self) -> str:
        return (
            f"{self.accepted_findings} finding(s) from {self.succeeded_chunks}/{self.total_chunks} "
            f"chunk(s); {self.failed_chunks} failed, {self.duplicate_findings} duplicate(s) dropped"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "target": self.target,
            "provider": self.provider,
            "model": self.model,
            "total_chunks": self.total_chunks,
            "succeeded_chunks": self.succeeded_chunks,
            "failed_chunks": self.failed_chunks,
            "malformed_chunks": self.malformed_chunks,
            "duplicate_findings": self.duplicate_findings,
            "findings": [f.to_dict() for f in self.findings],
            "errors": [e.to_dict() for e in self.errors],
            "processing_time_ms": self.processing_time_ms,
            "all_failed": self.all_failed,
        }


class AuditOrchestrator:
    """
    Composes chunking, dispatch, retries and aggregation per request.

    Rate limiter state and credential pools are shared across requests;
    aggregation state is per request.
    """

    def __init__(
        self,
        analyzer: Analyzer,
        config: AuditorConfig | None = None,
        sink: FindingSink | None = None,
        progress: Optional[ProgressCallback] = None,
        rate_limiter: RateLimiter | None = None,
        retry_controller: RetryController | None = None,
    ):
        config = config or AuditorConfig()
        problems = config.validate()
        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems))

        self._config = config
        self._config_lock = threading.Lock()
        self.sink = sink or CollectingSink()
        self.progress = progress
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limits)
        self.retry_controller = retry_controller or RetryController(analyzer)
        self.dispatcher = ProviderDispatcher(self.retry_controller, self.rate_limiter, config)
        self._pools: dict[tuple[Provider, tuple[str, ...]], CredentialPool] = {}
        self._pools_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> AuditorConfig:
        with self._config_lock:
            return self._config

    def set_token_budget(self, token_budget: int) -> None:
        if token_budget <= 0:
            raise ConfigurationError(f"Token budget must be positive, got {token_budget}")
        with self._config_lock:
            self._config = self._config.with_token_budget(token_budget)
        logger.info(f"[AUDIT] Token budget set to {token_budget}")

    def set_batch_size(self, batch_size: int) -> None:
        if not MIN_BATCH_SIZE <= batch_size <= MAX_BATCH_SIZE:
            raise ConfigurationError(
                f"Batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, got {batch_size}"
            )
        with self._config_lock:
            self._config = self._config.with_batch_size(batch_size)

    def update_rate_limits(self, provider: Provider | str, max_requests: int, window_seconds: float) -> None:
        if isinstance(provider, str):
            provider = Provider.from_id(provider)
        if max_requests <= 0 or window_seconds <= 0:
            raise ConfigurationError("Rate limits must be positive", provider=provider.value)
        with self._config_lock:
            self._config = self._config.with_rate_limits(provider, max_requests, window_seconds)
        self.rate_limiter.update_limits(provider, max_requests, window_seconds)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def build_request(
        self,
        content: str,
        model: str,
        credentials: list[str] | tuple[str, ...] | None = None,
        prompt: str | None = None,
        target: str = "",
    ) -> AnalysisRequest:
        """
        Build an immutable request from the current configuration snapshot.

        Raises:
            ConfigurationError: unknown model, or a remote provider without credentials
        """
        provider = resolve_provider(model)
        cleaned = tuple(c.strip() for c in (credentials or ()) if c and c.strip())
        if not cleaned and provider is not Provider.LOCAL:
            raise ConfigurationError(f"API key not configured for {model}", provider=provider.value, model=model)

        config = self.config
        return AnalysisRequest(
            content=content or "",
            prompt=prompt or config.prompt_template,
            provider=provider,
            credentials=cleaned,
            model=model,
            token_budget=config.token_budget,
            batch_size=config.batch_size,
            target=target,
            config=config,
        )

    def credential_pool(self, request: AnalysisRequest) -> CredentialPool | None:
        """Shared pool for rotating providers; None otherwise."""
        if not request.provider.supports_rotation or not request.credentials:
            return None
        key = (request.provider, request.credentials)
        with self._pools_lock:
            pool = self._pools.get(key)
            if pool is None:
                pool = CredentialPool(request.credentials)
                self._pools[key] = pool
            return pool

    async def analyze(self, request: AnalysisRequest, sink: FindingSink | None = None) -> AuditReport:
        """
        Analyze one request end to end.

        Returns:
            AuditReport with per-chunk accounting and accepted findings

        Raises:
            ConfigurationError: prompt leaves no room in the token budget
            FatalError: orchestrator already shut down
        """
        if self.dispatcher.is_shutdown:
            raise FatalError("Orchestrator is shut down", provider=request.provider.value, model=request.model)

        loop = asyncio.get_running_loop()
        start = loop.time()
        report = AuditReport(
            request_id=request.request_id,
            target=request.target,
            provider=request.provider.value,
            model=request.model,
        )

        if not request.content:
            logger.info(f"[AUDIT] {request.request_id}: empty content, nothing to analyze")
            return report

        chunks = chunk_content(request.content, request.prompt, request.token_budget)
        if not chunks:
            raise ConfigurationError(
                f"Prompt ({estimate_tokens(request.prompt)} tokens) exceeds token budget "
                f"{request.token_budget}",
                provider=request.provider.value,
                model=request.model,
            )

        report.total_chunks = len(chunks)
        aggregator = FindingsAggregator(request, sink or self.sink)
        tracker = ProgressTracker(request.request_id, len(chunks), self.progress)
        pool = self.credential_pool(request)
        semaphore = asyncio.Semaphore(request.batch_size)

        logger.info(
            f"[AUDIT] {request.request_id}: {len(chunks)} chunk(s) -> "
            f"{request.provider.value}/{request.model} (batch size {request.batch_size})"
        )
        tracker.on_started()

        async def run_chunk(task: Task) -> TaskOutcome:
            async with semaphore:
                try:
                    future = await self.dispatcher.submit(task, pool)
                    return await future
                except AuditorError as e:
                    if not task.is_terminal:
                        task.fail(e)
                    return TaskOutcome(task=task, error=e)
                except Exception as e:
                    logger.exception(
                        f"[AUDIT] {request.request_id}: unexpected error in chunk {task.chunk.index} "
                        f"({task.provider.value}/{task.model}, attempt {task.attempts})"
                    )
                    if not task.is_terminal:
                        task.fail(e)
                    return TaskOutcome(task=task, error=e)

        pending = [
            asyncio.ensure_future(run_chunk(Task(chunk=chunk, request=request)))
            for chunk in chunks
        ]

        try:
            for completed in asyncio.as_completed(pending):
                outcome = await completed
                self._record(outcome, aggregator, tracker, report)
        finally:
            unfinished = [t for t in pending if not t.done()]
            if unfinished:
                logger.warning(
                    f"[AUDIT] {request.request_id}: analysis interrupted, "
                    f"cancelling {len(unfinished)} unfinished chunk(s)"
                )
                for t in unfinished:
                    t.cancel()
                await asyncio.gather(*unfinished, return_exceptions=True)

        report.malformed_chunks = aggregator.stats.malformed_chunks
        report.duplicate_findings = aggregator.stats.duplicates
        report.findings = list(aggregator.stats.accepted_findings)
        report.processing_time_ms = int((loop.time() - start) * 1000)

        if report.all_failed:
            message = f"All {report.total_chunks} chunk(s) failed for {request.target or request.request_id}"
            logger.error(f"[AUDIT] {request.request_id}: {message}")
            tracker.on_error(message)
        else:
            logger.info(f"[AUDIT] {request.request_id}: {report.summary()}")
        tracker.on_completed(report.summary())
        return report

    def _record(
        self,
        outcome: TaskOutcome,
        aggregator: FindingsAggregator,
        tracker: ProgressTracker,
        report: AuditReport,
    ) -> None:
        task = outcome.task
        if outcome.succeeded:
            report.succeeded_chunks += 1
            for finding in aggregator.consume(outcome):
                tracker.on_finding(str(finding))
            tracker.on_chunk_completed(task.chunk.index)
            return

        report.failed_chunks += 1
        error = outcome.error
        report.errors.append(ChunkError(
            chunk_index=task.chunk.index,
            provider=task.provider.value,
            model=task.model,
            attempts=task.attempts,
            error_type=type(error).__name__,
            message=str(error),
        ))
        tracker.on_chunk_failed(task.chunk.index, str(error))

    async def analyze_many(
        self,
        requests: list[AnalysisRequest],
        sink: FindingSink | None = None,
    ) -> list[AuditReport]:
        """
        Analyze several requests, batch_size at a time, pausing between groups.

        A request that raises (e.g. a configuration problem) is logged and
        skipped; the others still run.
        """
        reports: list[AuditReport] = []
        config = self.config
        group_size = config.batch_size

        for start in range(0, len(requests), group_size):
            group = requests[start:start + group_size]
            results = await asyncio.gather(
                *(self.analyze(request, sink) for request in group),
                return_exceptions=True,
            )
            for request, result in zip(group, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.error(f"[AUDIT] {request.request_id} ({request.target}): {result}")
                    continue
                reports.append(result)

            if start + group_size < len(requests) and config.inter_batch_delay_seconds > 0:
                await asyncio.sleep(config.inter_batch_delay_seconds)

        return reports

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self, timeout: float | None = None) -> None:
        await self.dispatcher.shutdown(timeout)

    async def __aenter__(self) -> "AuditOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    def get_stats(self) -> dict[str, Any]:
        return {
            "rate_limiter": self.rate_limiter.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "credential_pools": len(self._pools),
        }
