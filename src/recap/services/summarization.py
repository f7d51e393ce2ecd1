"""Transcript summarization via an Azure OpenAI chat deployment through LiteLLM.

Provides TranscriptSummarizer, which turns the transcript accumulated over
one summary interval into a short bullet-point summary. Transient failures
are retried with the same fixed-delay shape as transcription, but unlike
transcription a final failure is raised: a failed summary means the chat
receives nothing for a whole interval, and the caller has to log that.

Exports:
    TranscriptSummarizer: Async summarization client.
    SummarizationError: Raised when summarization fails permanently.
"""

from __future__ import annotations

from typing import Any

import litellm
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from src.recap.core.monitoring import track_remote_call

logger = structlog.get_logger(__name__)

MINIMUM_TRANSCRIPT_LENGTH = 20
MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 1.0
DEFAULT_MAX_TOKENS = 1024

NOT_ENOUGH_CONTENT_MESSAGE = "Not enough transcript content to generate a summary."
EMPTY_SUMMARY_MESSAGE = "The model returned an empty summary."

SYSTEM_PROMPT = """You are a meeting summarizer. Given a transcript of a meeting, produce a concise summary using bullet points. You must:
- Identify key discussion topics
- Note any decisions made
- List action items if any
- Include speaker names when available in the transcript
Keep the summary brief and well-organized."""

_NETWORK_ERROR_MARKERS = ("network", "econnreset", "timeout", "econnrefused")


class SummarizationError(RuntimeError):
    """Raised when the completion call fails permanently or exhausts retries."""


def is_transient_error(error: BaseException) -> bool:
    """Rate limits, server errors, and network-level failures are retryable."""
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int) and (status_code >= 500 or status_code == 429):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _NETWORK_ERROR_MARKERS)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "summarization.transient_error_retrying",
        attempt=retry_state.attempt_number,
        status_code=getattr(exc, "status_code", None),
        error=str(exc),
    )


class TranscriptSummarizer:
    """Summarizes transcripts with a fixed system instruction.

    Args:
        endpoint: Azure OpenAI resource endpoint (no ``/openai/...`` path).
        deployment: Chat deployment name.
        api_version: Azure OpenAI API version.
        api_key: Static API key (api-key auth mode).
        token_provider: Object with ``async get_token() -> str`` (Entra mode).
        max_tokens: Completion token budget.
        timeout: Request timeout in seconds.
        retry_delay: Fixed delay between attempts in seconds.
    """

    def __init__(
        self,
        endpoint: str,
        deployment: str,
        api_version: str,
        api_key: str = "",
        token_provider: Any = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = 30.0,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ) -> None:
        self._endpoint = endpoint
        self._deployment = deployment
        self._api_version = api_version
        self._api_key = api_key
        self._token_provider = token_provider
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._retry_delay = retry_delay

    async def summarize(self, transcript: str) -> str:
        """Summarize accumulated transcript text.

        Returns:
            Summary text, or a canned message when the transcript is too
            short or the model returns no content.

        Raises:
            SummarizationError: On a permanent failure or after retries.
        """
        if not transcript or len(transcript.strip()) < MINIMUM_TRANSCRIPT_LENGTH:
            logger.info("summarization.skipped_short_transcript", chars=len(transcript or ""))
            return NOT_ENOUGH_CONTENT_MESSAGE

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": transcript},
        ]

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(MAX_RETRIES + 1),
                wait=wait_fixed(self._retry_delay),
                retry=retry_if_exception(is_transient_error),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    response = await self._complete(messages)
        except Exception as exc:
            raise SummarizationError(f"Failed to summarize transcript: {exc}") from exc

        summary = _first_choice_content(response)
        if not summary:
            logger.warning("summarization.empty_response")
            return EMPTY_SUMMARY_MESSAGE
        return summary

    async def _auth_kwargs(self) -> dict[str, str]:
        if self._api_key:
            return {"api_key": self._api_key}
        return {"azure_ad_token": await self._token_provider.get_token()}

    async def _complete(self, messages: list[dict]) -> Any:
        auth = await self._auth_kwargs()
        async with track_remote_call("completion"):
            return await litellm.acompletion(
                model=f"azure/{self._deployment}",
                messages=messages,
                max_tokens=self._max_tokens,
                api_base=self._endpoint,
                api_version=self._api_version,
                timeout=self._timeout,
                num_retries=0,
                **auth,
            )


def _first_choice_content(response: Any) -> str:
    try:
        return response.choices[0].message.content or ""
    except (AttributeError, IndexError, KeyError, TypeError):
        return ""
