"""
HTTP Analyzer for the supported providers.

Implements the Analyzer protocol used by the RetryController:
- openai: AsyncOpenAI chat completions (one client per credential)
- claude: Anthropic messages API over httpx
- gemini: generateContent over httpx (key in the query string)
- local: plain POST {"prompt": ...} to a configured endpoint

All calls share one pooled httpx.AsyncClient. Errors are left as the
underlying httpx/openai exceptions; errors.classify_error() decides what
is retried.
"""

import logging
from typing import Any, TYPE_CHECKING

import httpx
from openai import AsyncOpenAI

from .credentials import mask_credential
from .errors import ConfigurationError, classify_error, ErrorKind
from .prompts import build_analysis_message
from .providers import Provider

if TYPE_CHECKING:
    from .config import AuditorConfig

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
CLAUDE_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
CLAUDE_API_VERSION = "2023-06-01"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
CLAUDE_MAX_TOKENS = 1024


class HttpAnalyzer:
    """Sends one chunk to one provider and returns the raw JSON payload."""

    def __init__(
        self,
        config: "AuditorConfig",
        http_client: httpx.AsyncClient | None = None,
        openai_base_url: str = OPENAI_BASE_URL,
    ):
        self.config = config
        self.openai_base_url = openai_base_url
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_seconds),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )
        self._openai_clients: dict[str, AsyncOpenAI] = {}

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> "HttpAnalyzer":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _openai_client(self, credential: str) -> AsyncOpenAI:
        client = self._openai_clients.get(credential)
        if client is None:
            client = AsyncOpenAI(
                api_key=credential,
                base_url=self.openai_base_url,
                http_client=self._http_client,
                timeout=self.config.request_timeout_seconds,
                max_retries=0,  # RetryController owns retries
            )
            self._openai_clients[credential] = client
        return client

    async def analyze(
        self,
        provider: Provider,
        credential: str,
        model: str,
        content: str,
        prompt: str,
    ) -> dict[str, Any]:
        message = build_analysis_message(prompt, content)
        logger.debug(
            f"[AUDIT] -> {provider.value}/{model} key={mask_credential(credential)} "
            f"({len(message)} chars)"
        )

        if provider is Provider.OPENAI:
            response = await self._openai_client(credential).chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": message}],
            )
            return response.model_dump()

        if provider is Provider.CLAUDE:
            return await self._post(
                CLAUDE_MESSAGES_URL,
                {
                    "model": model,
                    "max_tokens": CLAUDE_MAX_TOKENS,
                    "messages": [{"role": "user", "content": message}],
                },
                headers={"x-api-key": credential, "anthropic-version": CLAUDE_API_VERSION},
            )

        if provider is Provider.GEMINI:
            return await self._post(
                f"{GEMINI_BASE_URL}/{model}:generateContent",
                {"contents": [{"parts": [{"text": message}]}]},
                params={"key": credential},
            )

        if provider is Provider.LOCAL:
            endpoint = self.config.local_endpoint.strip()
            if not endpoint:
                raise ConfigurationError("Local endpoint not configured", provider=provider.value, model=model)
            headers = {"Authorization": f"Bearer {credential}"} if credential else {}
            return await self._post(endpoint, {"prompt": message}, headers=headers)

        raise ConfigurationError(f"Unsupported provider: {provider}", model=model)

    async def _post(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self._http_client.post(
            url,
            json=body,
            headers={"Content-Type": "application/json", **(headers or {})},
            params=params,
        )
        response.raise_for_status()
        return response.json()

    async def validate_credential(self, provider: Provider, credential: str, model: str) -> bool:
        """
        Probe a credential with a tiny request.

        Returns:
            True if the provider accepted the call, False otherwise
        """
        try:
            await self.analyze(provider, credential, model, "ping", "Reply with OK.")
        except ConfigurationError:
            raise
        except Exception as e:
            kind = classify_error(e)
            level = logging.WARNING if kind == ErrorKind.CREDENTIAL else logging.INFO
            logger.log(
                level,
                f"[AUDIT] Credential {mask_credential(credential)} for {provider.value} "
                f"failed validation: {kind.value}: {e}",
            )
            return False
        return True
