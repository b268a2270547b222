# medintake/llm/retry.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from openai import (
    APIConnectionError,
    APIError,
    APIResponseValidationError,
    APIStatusError,
)

from medintake.errors import OracleMalformed, OracleUnavailable
from medintake.llm.client import LLMClient
from medintake.llm.parsing import extract_json_object
from medintake.text import is_blank

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Status codes worth another attempt; everything else (400, 401, 403, 404, 422)
# fails straight away.
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


def is_retryable_api_error(exc: Exception) -> bool:
    if isinstance(exc, APIConnectionError):
        # includes APITimeoutError
        return True
    if isinstance(exc, APIStatusError):
        status = getattr(exc, "status_code", 500)
        return status in RETRYABLE_STATUS_CODES or status >= 500
    return False


class RetryingLLMClient:
    """
    One place for the oracle retry contract:

      - at most ``max_retries`` extra attempts, delay doubling each time
      - rate limits, timeouts, connection drops and 5xx are retried
      - blank, non-JSON or schema-invalid payloads are retried too
        (the model sometimes emits whitespace when it gets truncated)
      - auth / bad-request style errors and any other API error fail
        immediately

    Raises OracleMalformed when the last attempt failed on the payload,
    OracleUnavailable otherwise.
    """

    def __init__(
        self,
        llm: LLMClient,
        max_retries: int = 2,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.llm = llm
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    async def complete_json(
        self,
        messages: List[Dict[str, str]],
        parse: Callable[[Dict[str, Any]], T],
        *,
        operation: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> T:
        attempts = self.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            if attempt > 0:
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "%s: retry %s/%s in %.1fs after %s: %s",
                    operation,
                    attempt,
                    self.max_retries,
                    delay,
                    last_error.__class__.__name__,
                    last_error,
                )
                await self._sleep(delay)

            try:
                raw = await self.llm.chat(
                    messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    json_mode=True,
                )
            except APIResponseValidationError as exc:
                # the SDK could not read the response body
                last_error = OracleMalformed(f"invalid response body: {exc}")
                continue
            except APIError as exc:
                last_error = exc
                if not is_retryable_api_error(exc):
                    logger.error("%s: non-retryable API error: %s", operation, exc)
                    raise OracleUnavailable(f"{operation} failed: {exc}") from exc
                continue

            if is_blank(raw):
                last_error = OracleMalformed("blank completion")
                continue

            try:
                return parse(extract_json_object(raw))
            except (OracleMalformed, ValueError, TypeError, KeyError) as exc:
                # pydantic.ValidationError is a ValueError
                last_error = exc if isinstance(exc, OracleMalformed) else OracleMalformed(str(exc))
                logger.debug("%s: unusable payload %r", operation, raw[:200])
                continue

        logger.error(
            "%s: giving up after %s attempts, last error: %s",
            operation,
            attempts,
            last_error,
        )
        if isinstance(last_error, OracleMalformed):
            raise OracleMalformed(f"{operation} failed: {last_error}") from last_error
        raise OracleUnavailable(f"{operation} failed: {last_error}") from last_error
