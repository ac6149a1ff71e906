"""Retry policy for remote spreadsheet calls.

Transient failures (rate limits, resets, timeouts, 5xx) are retried with
exponential backoff from a fixed base delay. Fatal failures propagate on the
first attempt. Once attempts are exhausted the last transient error is
re-raised unchanged so callers always see the typed error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.backend.common.config.app_config import config
from src.backend.store.errors import RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(err: BaseException) -> bool:
    return isinstance(err, RemoteError) and err.retryable


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry settings.

    max_attempts is the TOTAL number of tries, so the default of 4 means one
    call plus three retries (1s, 2s, 4s).
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        return cls(max_attempts=1)

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_attempts=max(1, config.SHEETS_RETRY_MAX_ATTEMPTS),
            base_delay=max(0.0, config.SHEETS_RETRY_BASE_DELAY),
            max_delay=max(0.0, config.SHEETS_RETRY_MAX_DELAY),
        )


class RetryPolicy:
    """Run callables under the retry config using tenacity."""

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._config = retry_config or RetryConfig()
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def call(self, fn: Callable[[], T], *, description: str) -> T:
        def _log_retry(state: RetryCallState) -> None:
            err = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "Sheets %s failed (%s). Retrying in %.2fs (%d/%d)",
                description,
                err,
                delay,
                state.attempt_number,
                self._config.max_attempts,
            )

        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep

        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(
                multiplier=self._config.base_delay,
                exp_base=self._config.exponential_base,
                max=self._config.max_delay,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=_log_retry,
            reraise=True,
            **kwargs,
        )
        return retrying(fn)
