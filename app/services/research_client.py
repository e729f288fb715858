"""
Research client for company-intelligence enrichment.
Wraps the OpenAI async client: one call per invocation, errors classified
into codes the enrichment executor understands. Retries and the timeout race
live in the executor.
"""

from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.enrichment.prompt_builder import RESEARCH_SYSTEM_MESSAGE

logger = get_logger(__name__)

# Internal call-level codes; the executor maps them onto the persisted taxonomy
CODE_AUTH = "auth"
CODE_QUOTA = "quota"
CODE_MODEL_NOT_FOUND = "model_not_found"
CODE_TIMEOUT = "timeout"
CODE_RATE_LIMITED = "rate_limited"
CODE_UNAVAILABLE = "unavailable"
CODE_EMPTY_RESPONSE = "empty_response"
CODE_BAD_REQUEST = "bad_request"
CODE_UNKNOWN = "unknown"


class ResearchClientError(Exception):
    """Raised when the research call fails."""

    def __init__(self, message: str, code: str = CODE_UNKNOWN, retryable: bool = True):
        super().__init__(message)
        self.code = code
        self.retryable = retryable


@dataclass(frozen=True)
class ResearchResponse:
    text: str
    model: str
    tokens_used: int | None = None


def classify_openai_error(error: Exception) -> ResearchClientError:
    """Map an OpenAI SDK exception onto a ResearchClientError."""
    message = str(error)

    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ResearchClientError(message, code=CODE_AUTH, retryable=False)

    if isinstance(error, openai.RateLimitError):
        if getattr(error, "code", None) == "insufficient_quota" or "quota" in message.lower():
            return ResearchClientError(message, code=CODE_QUOTA, retryable=False)
        return ResearchClientError(message, code=CODE_RATE_LIMITED, retryable=True)

    if isinstance(error, openai.NotFoundError):
        return ResearchClientError(message, code=CODE_MODEL_NOT_FOUND, retryable=False)

    if isinstance(error, openai.APITimeoutError):
        return ResearchClientError(message, code=CODE_TIMEOUT, retryable=True)

    if isinstance(error, openai.APIConnectionError):
        return ResearchClientError(message, code=CODE_UNAVAILABLE, retryable=True)

    if isinstance(error, openai.APIStatusError):
        status_code = getattr(error, "status_code", 500)
        if status_code >= 500:
            return ResearchClientError(message, code=CODE_UNAVAILABLE, retryable=True)
        return ResearchClientError(message, code=CODE_BAD_REQUEST, retryable=False)

    return ResearchClientError(message, code=CODE_UNKNOWN, retryable=True)


class ResearchClient:
    """
    Client for the external research capability.

    The underlying AsyncOpenAI client is created lazily so the application can
    start (and report auth problems as enrichment outcomes) without a key.
    """

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key
        self._client: AsyncOpenAI | None = None

    @property
    def api_key(self) -> str | None:
        return self._api_key if self._api_key is not None else settings.OPENAI_API_KEY

    def credentials_valid(self) -> bool:
        """Key must be present and shaped like an OpenAI secret key."""
        key = (self.api_key or "").strip()
        return key.startswith("sk-") and len(key) >= 20

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.credentials_valid():
                raise ResearchClientError(
                    "OPENAI_API_KEY missing or malformed", code=CODE_AUTH, retryable=False
                )
            # The executor races every call against its own timeout
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
            logger.info("Research client initialized", model=settings.ENRICH_MODEL)
        return self._client

    async def research(self, request: str, model: str) -> ResearchResponse:
        """
        Run one research call.

        Args:
            request: Natural-language research request
            model: Research model identifier

        Returns:
            ResearchResponse with the raw text

        Raises:
            ResearchClientError: classified failure
        """
        client = self._get_client()

        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": RESEARCH_SYSTEM_MESSAGE},
                    {"role": "user", "content": request},
                ],
                max_tokens=settings.ENRICH_MAX_TOKENS,
                temperature=settings.ENRICH_TEMPERATURE,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            raise classify_openai_error(e) from e

        if not response.choices or not response.choices[0].message.content:
            raise ResearchClientError(
                "Empty response from research model", code=CODE_EMPTY_RESPONSE, retryable=True
            )

        text = response.choices[0].message.content.strip()
        tokens_used = response.usage.total_tokens if response.usage else None

        logger.debug(
            "Research call returned",
            model=model,
            response_length=len(text),
            tokens_used=tokens_used,
        )

        return ResearchResponse(text=text, model=model, tokens_used=tokens_used)

    async def health_check(self) -> dict[str, Any]:
        """Configuration-level health (no paid API call)."""
        return {
            "healthy": self.credentials_valid() and settings.enrich_model_allowed(),
            "service": "research_client",
            "credentials_configured": self.credentials_valid(),
            "model": settings.ENRICH_MODEL,
            "model_allowed": settings.enrich_model_allowed(),
            "call_timeout_seconds": settings.ENRICH_CALL_TIMEOUT_SECONDS,
        }

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# Shared instance for application use
research_client = ResearchClient()


async def research_client_health() -> dict[str, Any]:
    """Check research client health."""
    return await research_client.health_check()


async def close_research_client() -> None:
    await research_client.close()
