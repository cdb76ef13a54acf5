"""
Common types for the audit pipeline.

Contains:
- Enums: Severity, Confidence, TaskState
- Dataclasses: Finding, Chunk, AnalysisRequest, Task
- Dedup key computation
"""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import AuditorConfig
from .providers import Provider


class Severity(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFORMATION = "INFORMATION"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.INFORMATION


class Confidence(Enum):
    CERTAIN = "CERTAIN"
    FIRM = "FIRM"
    TENTATIVE = "TENTATIVE"

    @classmethod
    def parse(cls, value: Any) -> "Confidence":
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.TENTATIVE


@dataclass(frozen=True)
class Finding:
    """A single normalized finding from a provider response."""
    title: str
    location: str
    explanation: str = ""
    exploitation: str = ""
    validation_steps: str = ""
    severity: Severity = Severity.INFORMATION
    confidence: Confidence = Confidence.TENTATIVE

    def to_dict(self) -> dict:
        return {
            "vulnerability": self.title,
            "location": self.location,
            "explanation": self.explanation,
            "exploitation": self.exploitation,
            "validation_steps": self.validation_steps,
            "severity": self.severity.value,
            "confidence": self.confidence.value,
        }

    def __str__(self) -> str:
        return f"**{self.title}** @ {self.location} [{self.severity.value}/{self.confidence.value}]"


def dedup_key(finding: Finding, target: str | None) -> str:
    """Deterministic fingerprint of (title, location, target)."""
    parts = [
        part if part else "unknown"
        for part in (finding.title.strip(), finding.location.strip(), (target or "").strip())
    ]
    # JSON encoding keeps field boundaries unambiguous
    raw = json.dumps(parts, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of request content."""
    index: int
    content: str

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class AnalysisRequest:
    """One user-initiated scan: content plus everything needed to analyze it."""
    content: str
    prompt: str
    provider: Provider
    credentials: tuple[str, ...]
    model: str
    token_budget: int
    batch_size: int
    target: str = ""
    config: AuditorConfig = field(default_factory=AuditorConfig)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# PENDING -> FAILED only when a task is rejected before it ever runs (shutdown)
_TRANSITIONS = {
    TaskState.PENDING: {TaskState.RUNNING, TaskState.FAILED},
    TaskState.RUNNING: {TaskState.RUNNING, TaskState.SUCCEEDED, TaskState.FAILED},
    TaskState.SUCCEEDED: set(),
    TaskState.FAILED: set(),
}


@dataclass
class Task:
    """
    One chunk bound to the provider/model/credential context of its request.

    Only the attempt counter, the credential pointer and the state change
    after construction.
    """
    chunk: Chunk
    request: AnalysisRequest
    attempts: int = 0
    credential: str = ""
    rotations: int = 0
    state: TaskState = TaskState.PENDING
    error: BaseException | None = None

    @property
    def provider(self) -> Provider:
        return self.request.provider

    @property
    def model(self) -> str:
        return self.request.model

    @property
    def is_terminal(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED)

    def transition(self, new_state: TaskState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid task transition {self.state.value} -> {new_state.value} "
                f"(chunk {self.chunk.index})"
            )
        self.state = new_state

    def fail(self, error: BaseException) -> None:
        self.error = error
        self.transition(TaskState.FAILED)
