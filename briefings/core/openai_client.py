"""OpenAI chat client for the enrichment stages, translating SDK errors into the briefing error taxonomy."""
import logging
from typing import Dict, List

import openai
from openai import OpenAI

from briefings.core.config import Settings
from briefings.guardrails.errors import PermanentProviderError, TransientProviderError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)
PERMANENT_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.NotFoundError,
    openai.BadRequestError,
)


def build_openai_client(cfg: Settings) -> OpenAI:
    """Return an OpenAI client configured with api_key, per-request timeout and SDK retries from settings.
    Why available: Built once at process start and passed into ChatClient, so no module holds a hidden client."""
    return OpenAI(api_key=cfg.openai_api_key, timeout=cfg.llm_timeout_seconds, max_retries=cfg.openai_max_retries)


class ChatClient:
    """Chat-completion calls: messages plus model, max output tokens and temperature in, stripped text out."""

    def __init__(self, client: OpenAI, timeout_seconds: float = 30.0):
        self._client = client
        self.timeout_seconds = timeout_seconds

    def complete(
        self,
        component: str,
        messages: List[Dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Run one completion for a pipeline component. Raises TransientProviderError (network, timeout, 429, 5xx) or PermanentProviderError (auth, bad request)."""
        try:
            resp = self._client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                n=1,
                timeout=self.timeout_seconds,
            )
        except TRANSIENT_ERRORS as e:
            raise TransientProviderError(f"LLM call failed for {component}: {e}") from e
        except PERMANENT_ERRORS as e:
            raise PermanentProviderError(f"LLM rejected {component} request: {e}") from e

        u = getattr(resp, "usage", None)
        logger.debug(
            "llm_completion",
            extra={
                "component": component,
                "model": model,
                "prompt_tokens": getattr(u, "prompt_tokens", 0) or 0,
                "completion_tokens": getattr(u, "completion_tokens", 0) or 0,
            },
        )
        if not resp.choices:
            return ""
        return (resp.choices[0].message.content or "").strip()
