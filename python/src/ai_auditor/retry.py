"""
Retry controller for chunk analysis tasks.

Runs one Task against the Analyzer with a bounded number of attempts and
linear backoff (retry_delay * attempt). For providers that rotate
credentials, a quota or credential failure moves the task to the next
untried credential before the next attempt; rotation spends attempts from
the same budget.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from .common_types import Task, TaskState
from .credentials import CredentialPool, mask_credential
from .errors import (
    AuditorError,
    ConfigurationError,
    CredentialError,
    ErrorKind,
    QuotaExhaustedError,
    TransientProviderError,
    classify_error,
    is_retryable,
)
from .providers import Provider

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    """Performs one provider call for one chunk."""

    async def analyze(
        self,
        provider: Provider,
        credential: str,
        model: str,
        content: str,
        prompt: str,
    ) -> dict[str, Any]:
        ...


@dataclass
class TaskOutcome:
    """Terminal result of a task: a raw payload or the last error."""
    task: Task
    payload: dict[str, Any] | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.task.state == TaskState.SUCCEEDED

    def describe(self) -> str:
        status = "ok" if self.succeeded else f"failed: {self.error}"
        return (
            f"chunk {self.task.chunk.index} [{self.task.provider.value}/{self.task.model}, "
            f"attempts={self.task.attempts}, rotations={self.task.rotations}] {status}"
        )


class RetryController:
    """Executes tasks with bounded retries and credential rotation."""

    def __init__(
        self,
        analyzer: Analyzer,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.analyzer = analyzer
        self._sleep = sleep

    async def execute(
        self,
        task: Task,
        pool: CredentialPool | None = None,
        before_attempt: Callable[[Task], Awaitable[None]] | None = None,
    ) -> TaskOutcome:
        """
        Run a task to a terminal state.

        Args:
            task: Pending task
            pool: Shared credential pool (only used by rotating providers)
            before_attempt: Hook awaited before every call, e.g. rate limit admission

        Returns:
            TaskOutcome; failures are returned, not raised
        """
        request = task.request
        config = request.config
        max_retries = max(1, config.max_retries)
        rotating = pool is not None and task.provider.supports_rotation

        task.transition(TaskState.RUNNING)

        if rotating:
            task.credential = pool.current()
        elif request.credentials:
            task.credential = request.credentials[0]

        tried = {task.credential}
        last_error: BaseException | None = None
        last_kind: ErrorKind | None = None

        for attempt in range(1, max_retries + 1):
            task.attempts = attempt
            if attempt > 1:
                task.transition(TaskState.RUNNING)

            try:
                if before_attempt is not None:
                    await before_attempt(task)
                payload = await asyncio.wait_for(
                    self.analyzer.analyze(
                        task.provider,
                        task.credential,
                        task.model,
                        task.chunk.content,
                        request.prompt,
                    ),
                    timeout=config.request_timeout_seconds,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                last_kind = classify_error(e)
            else:
                task.transition(TaskState.SUCCEEDED)
                if attempt > 1:
                    logger.info(
                        f"[RETRY] chunk {task.chunk.index} succeeded on attempt {attempt} "
                        f"({task.provider.value}/{task.model})"
                    )
                return TaskOutcome(task=task, payload=payload)

            logger.warning(
                f"[RETRY] chunk {task.chunk.index} attempt {attempt}/{max_retries} failed "
                f"({task.provider.value}/{task.model}, key {mask_credential(task.credential)}): "
                f"{last_kind.value}: {type(last_error).__name__}: {last_error}"
            )

            if not is_retryable(last_kind):
                break

            if attempt == max_retries:
                break

            if rotating and last_kind in (ErrorKind.QUOTA, ErrorKind.CREDENTIAL):
                if len(tried) < pool.size:
                    task.credential = pool.rotate_from(task.credential)
                    task.rotations += 1
                    tried.add(task.credential)

            await self._sleep(config.retry_delay_seconds * attempt)

        error = self._terminal_error(task, last_error, last_kind, rotating, pool, tried)
        task.fail(error)
        logger.error(f"[RETRY] {TaskOutcome(task=task, error=error).describe()}")
        return TaskOutcome(task=task, error=error)

    @staticmethod
    def _terminal_error(
        task: Task,
        last_error: BaseException | None,
        last_kind: ErrorKind | None,
        rotating: bool,
        pool: CredentialPool | None,
        tried: set[str],
    ) -> BaseException:
        context = {
            "provider": task.provider.value,
            "model": task.model,
            "attempt": task.attempts,
        }

        if last_kind == ErrorKind.CREDENTIAL and not rotating:
            error = CredentialError(f"Credential rejected: {last_error}", **context)
            error.__cause__ = last_error
            return error

        if last_kind in (ErrorKind.QUOTA, ErrorKind.CREDENTIAL) and (
            not rotating or len(tried) >= pool.size
        ):
            error = QuotaExhaustedError(
                f"All {len(tried)} credential(s) exhausted: {last_error}", **context
            )
            error.__cause__ = last_error
            return error

        if isinstance(last_error, AuditorError):
            if last_error.attempt is None:
                last_error.provider = last_error.provider or context["provider"]
                last_error.model = last_error.model or context["model"]
                last_error.attempt = context["attempt"]
            return last_error

        if last_kind == ErrorKind.MALFORMED_REQUEST:
            error = ConfigurationError(f"Request rejected: {last_error}", **context)
        else:
            error = TransientProviderError(
                f"Failed after {task.attempts} attempts: {last_error}", **context
            )
        error.__cause__ = last_error
        return error
