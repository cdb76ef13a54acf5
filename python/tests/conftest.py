"""
Pytest configuration and fixtures for AI Auditor tests.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable

import pytest

from ai_auditor.common_types import AnalysisRequest, Chunk, Task
from ai_auditor.config import AuditorConfig
from ai_auditor.providers import Provider, resolve_provider


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class AnalyzerCall:
    provider: Provider
    credential: str
    model: str
    content: str
    prompt: str


class ScriptedAnalyzer:
    """
    Analyzer double driven by a responder function.

    The responder gets (call, call_number) and returns a payload dict or an
    exception instance to raise.
    """

    def __init__(self, responder: Callable[[AnalyzerCall, int], Any], delay: float = 0.0):
        self.responder = responder
        self.delay = delay
        self.calls: list[AnalyzerCall] = []
        self.active = 0
        self.max_active = 0

    async def analyze(self, provider, credential, model, content, prompt):
        call = AnalyzerCall(provider, credential, model, content, prompt)
        self.calls.append(call)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.responder(call, len(self.calls))
        finally:
            self.active -= 1
        if isinstance(result, BaseException):
            raise result
        return result


def finding_dict(title: str, location: str = "param id", severity: str = "HIGH", confidence: str = "FIRM") -> dict:
    return {
        "vulnerability": title,
        "location": location,
        "explanation": f"Evidence for {title}",
        "exploitation": "Send a crafted request",
        "validation_steps": "Replay and compare",
        "severity": severity,
        "confidence": confidence,
    }


def openai_payload(findings: list[dict]) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": json.dumps({"findings": findings})}}]}


def claude_payload(findings: list[dict]) -> dict:
    return {"content": [{"type": "text", "text": json.dumps({"findings": findings})}]}


def gemini_payload(findings: list[dict]) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": json.dumps({"findings": findings})}]}}]}


def payload_for(provider: Provider, findings: list[dict]) -> dict:
    if provider is Provider.CLAUDE:
        return claude_payload(findings)
    if provider is Provider.GEMINI:
        return gemini_payload(findings)
    if provider is Provider.LOCAL:
        return {"content": json.dumps({"findings": findings})}
    return openai_payload(findings)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_config() -> AuditorConfig:
    """Config with zero backoff and short polling so tests run fast."""
    return AuditorConfig(
        token_budget=8192,
        prompt_template="Find bugs.",
        max_retries=3,
        retry_delay_seconds=0.0,
        batch_size=5,
        admission_poll_interval=0.01,
        inter_batch_delay_seconds=0.0,
        request_timeout_seconds=5.0,
        task_timeout_seconds=5.0,
        shutdown_timeout_seconds=1.0,
        local_endpoint="http://localhost:11434/api/generate",
    )


@pytest.fixture
def make_task(fast_config: AuditorConfig) -> Callable[..., Task]:
    """Build a pending Task for a model without going through the orchestrator."""

    def _make(
        model: str = "gpt-4o-mini",
        credentials: tuple[str, ...] = ("key-one",),
        content: str = "GET /api/users?id=1 HTTP/1.1",
        config: AuditorConfig | None = None,
        index: int = 0,
    ) -> Task:
        cfg = config or fast_config
        request = AnalysisRequest(
            content=content,
            prompt=cfg.prompt_template,
            provider=resolve_provider(model),
            credentials=credentials,
            model=model,
            token_budget=cfg.token_budget,
            batch_size=cfg.batch_size,
            target="https://example.test/api/users",
            config=cfg,
        )
        return Task(chunk=Chunk(index=index, content=content), request=request)

    return _make


@pytest.fixture
def mock_llm_response() -> dict:
    """Create a mock chat completion response."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1234567890,
        "model": "gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": json.dumps({"findings": [finding_dict("SQL Injection")]}),
                },
                "finish_reason": "stop",
            }
        ],
        "usage": {
            "prompt_tokens": 100,
            "completion_tokens": 50,
            "total_tokens": 150,
        },
    }
