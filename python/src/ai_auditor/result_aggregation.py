"""
Result Aggregation for audit requests.

Provides:
- FindingSink protocol and an in-memory CollectingSink
- FindingsAggregator: order-independent, duplicate-safe merging of
  per-chunk results for one AnalysisRequest
- Markdown formatting of accepted findings
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

from .common_types import AnalysisRequest, Finding, dedup_key
from .errors import MalformedResponseError
from .retry import TaskOutcome
from .structured_output import findings_from_payload

logger = logging.getLogger(__name__)


class FindingSink(Protocol):
    """Receives each deduplicated finding exactly once."""

    def accept(self, finding: Finding, context_identity: str) -> None:
        ...


class CollectingSink:
    """Thread-safe sink that keeps accepted findings in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: list[tuple[Finding, str]] = []

    def accept(self, finding: Finding, context_identity: str) -> None:
        with self._lock:
            self._items.append((finding, context_identity))

    @property
    def findings(self) -> list[Finding]:
        with self._lock:
            return [finding for finding, _ in self._items]

    def for_target(self, target: str) -> list[Finding]:
        with self._lock:
            return [finding for finding, ctx in self._items if ctx == target]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class AggregationStats:
    accepted: int = 0
    duplicates: int = 0
    malformed_chunks: int = 0
    sink_errors: int = 0
    accepted_findings: list[Finding] = field(default_factory=list)


class FindingsAggregator:
    """
    Merges chunk results for one request.

    The seen-set is scoped to the request and guarded by a lock, since
    chunk completions race each other.
    """

    def __init__(self, request: AnalysisRequest, sink: FindingSink):
        self.request = request
        self.sink = sink
        self._lock = threading.Lock()
        self._seen: set[str] = set()
        self.stats = AggregationStats()

    def consume(self, outcome: TaskOutcome) -> list[Finding]:
        """
        Extract findings from a successful outcome and forward new ones.

        Returns:
            The findings accepted from this outcome
        """
        if not outcome.succeeded:
            return []

        try:
            findings = findings_from_payload(self.request.provider, outcome.payload)
        except MalformedResponseError as e:
            with self._lock:
                self.stats.malformed_chunks += 1
            logger.warning(
                f"[AGGREGATE] chunk {outcome.task.chunk.index} "
                f"({self.request.provider.value}/{self.request.model}, "
                f"attempt {outcome.task.attempts}): {e.message}; contributes no findings"
            )
            return []

        return [finding for finding in findings if self.offer(finding)]

    def offer(self, finding: Finding) -> bool:
        """Accept a finding unless its dedup key was already seen."""
        key = dedup_key(finding, self.request.target)
        with self._lock:
            if key in self._seen:
                self.stats.duplicates += 1
                return False
            self._seen.add(key)
            self.stats.accepted += 1
            self.stats.accepted_findings.append(finding)

        try:
            self.sink.accept(finding, self.request.target)
        except Exception as e:
            with self._lock:
                self.stats.sink_errors += 1
            logger.error(f"[AGGREGATE] sink rejected finding {finding.title!r}: {type(e).__name__}: {e}")
        return True

    @property
    def seen_count(self) -> int:
        with self._lock:
            return len(self._seen)


def format_findings_markdown(findings: list[Finding], title: str = "Findings") -> str:
    """
    Format findings list as markdown.

    Args:
        findings: List of Finding objects
        title: Section title

    Returns:
        Markdown formatted string
    """
    if not findings:
        return f"## {title}\n\nNo findings."

    lines = [f"## {title}", f"**Count:** {len(findings)}", ""]

    for i, finding in enumerate(findings, 1):
        lines.append(
            f"### {i}. {finding.title} [{finding.severity.value}/{finding.confidence.value}]"
        )
        lines.append(f"**Location:** {finding.location}")
        if finding.explanation:
            lines.append(f"**Details:** {finding.explanation}")
        if finding.exploitation:
            lines.append(f"**Exploitation:** {finding.exploitation}")
        if finding.validation_steps:
            lines.append(f"**Validation:** {finding.validation_steps}")
        lines.append("")

    return "\n".join(lines)
