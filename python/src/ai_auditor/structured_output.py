"""
Structured output normalization for provider responses.

Each provider wraps the model's text differently; extract_content() pulls
the text out, and parse_findings() turns the JSON the prompt asks for
into Finding objects. Anything unparseable raises MalformedResponseError
so the caller can count the chunk as contributing zero findings.
"""

import json
import re
from typing import Any

from .common_types import Confidence, Finding, Severity
from .errors import MalformedResponseError
from .providers import Provider

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?|\n?```\s*$")


def _first(items: Any) -> Any:
    if isinstance(items, list) and items:
        return items[0]
    return None


def extract_content(provider: Provider, payload: Any) -> str:
    """
    Extract the model's text from a raw provider payload.

    Returns:
        The text, or "" when the payload does not have the expected shape
    """
    if not isinstance(payload, dict):
        return ""

    if provider is Provider.CLAUDE:
        block = _first(payload.get("content"))
        if isinstance(block, dict):
            return str(block.get("text") or "")

    elif provider is Provider.GEMINI:
        candidate = _first(payload.get("candidates"))
        if isinstance(candidate, dict):
            content = candidate.get("content")
            if isinstance(content, dict):
                part = _first(content.get("parts"))
                if isinstance(part, dict):
                    return str(part.get("text") or "")

    elif provider is Provider.OPENAI:
        return _openai_text(payload)

    elif provider is Provider.LOCAL:
        # Local servers vary: plain {"content"}, ollama-style {"response"},
        # or an OpenAI-compatible chat completion
        for key in ("content", "response"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        return _openai_text(payload)

    return ""


def _openai_text(payload: dict) -> str:
    choice = _first(payload.get("choices"))
    if isinstance(choice, dict):
        message = choice.get("message")
        if isinstance(message, dict):
            return str(message.get("content") or "")
    return ""


def strip_json_fences(text: str) -> str:
    """Unwrap ```json ... ``` and trim to the outermost JSON object."""
    text = _FENCE_RE.sub("", text.strip()).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def _text_field(entry: dict, key: str, default: str = "") -> str:
    value = entry.get(key)
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        return "\n".join(str(v) for v in value)
    text = str(value).strip()
    return text or default


def finding_from_dict(entry: dict) -> Finding:
    return Finding(
        title=_text_field(entry, "vulnerability") or _text_field(entry, "title", "Unknown Vulnerability"),
        location=_text_field(entry, "location", "Unknown"),
        explanation=_text_field(entry, "explanation", "No explanation provided"),
        exploitation=_text_field(entry, "exploitation"),
        validation_steps=_text_field(entry, "validation_steps"),
        severity=Severity.parse(entry.get("severity", "")),
        confidence=Confidence.parse(entry.get("confidence", "")),
    )


def parse_findings(text: str) -> list[Finding]:
    """
    Parse the findings JSON emitted by a model.

    Args:
        text: Model output, optionally wrapped in a markdown fence

    Returns:
        Normalized findings (possibly empty)

    Raises:
        MalformedResponseError: empty text, invalid JSON, or no "findings" list
    """
    if not text or not text.strip():
        raise MalformedResponseError("No valid content found in AI response")

    candidate = strip_json_fences(text)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e.msg}") from e

    if not isinstance(data, dict) or not isinstance(data.get("findings"), list):
        raise MalformedResponseError("Key 'findings' not found in extracted JSON")

    return [finding_from_dict(entry) for entry in data["findings"] if isinstance(entry, dict)]


def findings_from_payload(provider: Provider, payload: Any) -> list[Finding]:
    """extract_content() followed by parse_findings()."""
    return parse_findings(extract_content(provider, payload))
