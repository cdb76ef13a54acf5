"""
Provider dispatch: one execution context per provider.

Parallel-capable providers get a bounded worker pool (core workers started
on first use, extra workers up to max_workers while jobs are waiting,
idle extras retire after keep_alive). When the pool's queue is full the
job runs in the submitting coroutine instead of being dropped.
Cancelling a returned future cancels its job, or skips it if still queued.
Strictly-serial providers (locally hosted models) get exactly one worker;
submitters wait for queue space.

Every attempt of a task is admitted by the RateLimiter first (polling at a
fixed interval, bounded by the task timeout).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .common_types import Task
from .config import AuditorConfig
from .credentials import CredentialPool
from .errors import FatalError, TransientProviderError
from .providers import Provider, SchedulingClass
from .rate_limiter import RateLimiter
from .retry import RetryController, TaskOutcome

logger = logging.getLogger(__name__)

KEEP_ALIVE_SECONDS = 60.0

Job = Callable[[], Awaitable[Any]]


class ExecutionContext:
    """
    Bounded pool of asyncio workers fed by a bounded queue.

    Args:
        name: Used for logging and worker task names
        core_workers: Workers kept alive for the context's lifetime
        max_workers: Upper bound including on-demand workers
        queue_capacity: Jobs waiting for a worker
        caller_runs: On a full queue run the job in the caller (True) or
            wait for space (False)
    """

    def __init__(
        self,
        name: str,
        core_workers: int = 3,
        max_workers: int = 5,
        queue_capacity: int = 100,
        caller_runs: bool = True,
        keep_alive: float = KEEP_ALIVE_SECONDS,
    ):
        self.name = name
        self.core_workers = core_workers
        self.max_workers = max(max_workers, core_workers)
        self.caller_runs = caller_runs
        self.keep_alive = keep_alive
        self._queue_capacity = queue_capacity
        self._queue: asyncio.Queue | None = None
        self._workers: set[asyncio.Task] = set()
        self._core: set[asyncio.Task] = set()
        self._idle = 0
        self._worker_seq = 0
        self._accepting = True

        # Stats
        self._submitted = 0
        self._completed = 0
        self._caller_ran = 0

    @property
    def queue(self) -> asyncio.Queue:
        # Created lazily so the context binds to the loop that uses it
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._queue_capacity)
        return self._queue

    @property
    def is_shutdown(self) -> bool:
        return not self._accepting

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    def _spawn_worker(self, core: bool) -> None:
        self._worker_seq += 1
        worker = asyncio.create_task(
            self._worker_loop(core),
            name=f"{self.name}-worker-{self._worker_seq}",
        )
        self._workers.add(worker)
        if core:
            self._core.add(worker)
        worker.add_done_callback(self._on_worker_exit)

    def _on_worker_exit(self, worker: asyncio.Task) -> None:
        self._workers.discard(worker)
        self._core.discard(worker)

    def _ensure_workers(self) -> None:
        if len(self._core) < self.core_workers:
            while len(self._core) < self.core_workers:
                self._spawn_worker(core=True)
            return
        if self._idle == 0 and self.queue.qsize() > 0 and len(self._workers) < self.max_workers:
            self._spawn_worker(core=False)

    async def _worker_loop(self, core: bool) -> None:
        queue = self.queue
        while True:
            self._idle += 1
            try:
                if core:
                    item = await queue.get()
                else:
                    item = await asyncio.wait_for(queue.get(), timeout=self.keep_alive)
            except asyncio.TimeoutError:
                return
            finally:
                self._idle -= 1

            job, future = item
            try:
                await self._run(job, future)
            finally:
                queue.task_done()

    async def _run(self, job: Job, future: asyncio.Future) -> None:
        # Submitter stopped waiting before a worker picked the job up
        if future.cancelled():
            return

        runner = asyncio.ensure_future(job())
        future.add_done_callback(lambda f: runner.cancel() if f.cancelled() else None)
        try:
            result = await runner
        except asyncio.CancelledError:
            if future.cancelled() and self._accepting:
                return
            if asyncio.current_task() not in self._workers:
                # Caller-run job whose submitter was cancelled
                future.cancel()
            elif not future.done():
                future.set_exception(FatalError(f"{self.name}: job cancelled during shutdown"))
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._completed += 1

    async def submit(self, job: Job) -> asyncio.Future:
        """
        Hand a job to the context.

        Returns:
            Future resolved with the job's result (or exception)

        Raises:
            FatalError: if the context is shutting down
        """
        if not self._accepting:
            raise FatalError(f"{self.name}: not accepting new tasks (shutdown)")

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._submitted += 1

        try:
            self.queue.put_nowait((job, future))
        except asyncio.QueueFull:
            if self.caller_runs:
                self._caller_ran += 1
                logger.debug(f"[DISPATCH] {self.name} queue full, running in caller")
                await self._run(job, future)
                return future
            self._ensure_workers()
            await self.queue.put((job, future))

        self._ensure_workers()
        return future

    async def shutdown(self, timeout: float = 30.0) -> None:
        """
        Stop accepting jobs, drain, then cancel whatever is left.

        Futures of jobs that never ran are failed with FatalError so every
        submission observes a completion.
        """
        self._accepting = False
        if self._queue is None:
            return

        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[DISPATCH] {self.name}: shutdown deadline ({timeout}s) exceeded, "
                    f"cancelling {len(self._workers)} worker(s)"
                )

        workers = list(self._workers)
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            self._queue.task_done()
            if not future.done():
                future.set_exception(FatalError(f"{self.name}: shut down before task ran"))

    def get_stats(self) -> dict[str, Any]:
        return {
            "workers": len(self._workers),
            "idle": self._idle,
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "submitted": self._submitted,
            "completed": self._completed,
            "caller_ran": self._caller_ran,
            "shutdown": self.is_shutdown,
        }


class ProviderDispatcher:
    """Routes tasks into their provider's execution context."""

    def __init__(
        self,
        retry_controller: RetryController,
        rate_limiter: RateLimiter,
        config: AuditorConfig | None = None,
    ):
        self.retry_controller = retry_controller
        self.rate_limiter = rate_limiter
        self.config = config or AuditorConfig()
        self._contexts: dict[Provider, ExecutionContext] = {}
        self._shutdown = False

    def context_for(self, provider: Provider) -> ExecutionContext:
        context = self._contexts.get(provider)
        if context is None:
            if provider.scheduling is SchedulingClass.SERIAL:
                context = ExecutionContext(
                    name=f"{provider.value}-serial",
                    core_workers=1,
                    max_workers=1,
                    queue_capacity=self.config.queue_capacity,
                    caller_runs=False,
                )
            else:
                context = ExecutionContext(
                    name=f"{provider.value}-pool",
                    core_workers=self.config.core_workers,
                    max_workers=self.config.max_workers,
                    queue_capacity=self.config.queue_capacity,
                    caller_runs=True,
                )
            self._contexts[provider] = context
        return context

    async def submit(self, task: Task, pool: CredentialPool | None = None) -> asyncio.Future:
        """
        Submit a task; returns a future resolving to its TaskOutcome.

        Raises:
            FatalError: after shutdown() has been called
        """
        if self._shutdown:
            raise FatalError("Dispatcher is shut down", provider=task.provider.value, model=task.model)

        async def job() -> TaskOutcome:
            return await self._execute(task, pool)

        return await self.context_for(task.provider).submit(job)

    async def _execute(self, task: Task, pool: CredentialPool | None) -> TaskOutcome:
        config = task.request.config
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.task_timeout_seconds

        async def admit(t: Task) -> None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransientProviderError(
                    f"Task timeout ({config.task_timeout_seconds}s) exceeded",
                    provider=t.provider.value,
                    model=t.model,
                    attempt=t.attempts,
                )
            await self.rate_limiter.acquire(
                t.provider,
                poll_interval=config.admission_poll_interval,
                timeout=remaining,
            )

        return await self.retry_controller.execute(task, pool, before_attempt=admit)

    async def shutdown(self, timeout: float | None = None) -> None:
        self._shutdown = True
        timeout = self.config.shutdown_timeout_seconds if timeout is None else timeout
        contexts = list(self._contexts.values())
        if contexts:
            await asyncio.gather(*(c.shutdown(timeout) for c in contexts))
        logger.info(f"[DISPATCH] Shut down {len(contexts)} execution context(s)")

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def get_stats(self) -> dict[str, Any]:
        return {provider.value: ctx.get_stats() for provider, ctx in self._contexts.items()}
