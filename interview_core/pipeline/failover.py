"""
Primary/fallback provider invocation.

Each stage calls its primary provider once; on an exception, a timeout or an
invalid payload it calls the fallback once. There is no retry of the same
provider and no backoff. Every attempt is reported to the telemetry sink in
the background.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Set, Tuple, TypeVar

import structlog

from interview_core.errors import (
    AllProvidersExhausted,
    ProviderResponseError,
    RunCancelled,
    SchemaValidationError,
)
from interview_core.models import AttemptOutcome, ProviderAttempt
from interview_core.pipeline.latency import TelemetrySink

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class ProviderCall(Generic[T]):
    """A zero-argument coroutine factory bound to a named provider."""

    provider: str
    call: Callable[[], Awaitable[T]]


class FailoverInvoker:
    """
    Runs a stage against a primary provider and, if needed, a fallback.

    Selection order is always primary then fallback.
    """

    def __init__(self, telemetry: Optional[TelemetrySink] = None):
        self.telemetry = telemetry
        self._reports: Set[asyncio.Task] = set()

    async def invoke(
        self,
        stage: str,
        primary: ProviderCall[T],
        fallback: ProviderCall[T],
        timeout_ms: float,
        is_valid: Optional[Callable[[T], bool]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[T, List[ProviderAttempt]]:
        """
        Invoke ``primary`` then, on failure, ``fallback``.

        Args:
            stage: Stage name used for telemetry and error codes
            primary: Preferred provider call
            fallback: Secondary provider call
            timeout_ms: Per-call timeout
            is_valid: Predicate rejecting empty or unusable payloads
            cancel_event: When set, no further provider is called

        Returns:
            The winning payload and every attempt made

        Raises:
            AllProvidersExhausted: Both providers failed
            RunCancelled: The run was cancelled before a call was made
        """
        attempts: List[ProviderAttempt] = []

        for candidate in (primary, fallback):
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled(stage=stage)

            attempt, result = await self._attempt(stage, candidate, timeout_ms, is_valid)
            attempts.append(attempt)
            self._report(attempt)

            if attempt.succeeded:
                if len(attempts) > 1:
                    logger.info(
                        "failover_succeeded",
                        stage=stage,
                        provider=candidate.provider,
                        failed_provider=attempts[0].provider,
                    )
                return result, attempts

            logger.warning(
                "provider_attempt_failed",
                stage=stage,
                provider=candidate.provider,
                outcome=attempt.outcome.value,
                error_type=attempt.error_type,
                error=attempt.error_message,
            )

        raise AllProvidersExhausted(stage, attempts)

    async def _attempt(
        self,
        stage: str,
        candidate: ProviderCall[T],
        timeout_ms: float,
        is_valid: Optional[Callable[[T], bool]],
    ) -> Tuple[ProviderAttempt, Optional[T]]:
        started_at = time.time()
        start = time.monotonic()

        def finish(outcome: AttemptOutcome, error: Optional[BaseException] = None) -> ProviderAttempt:
            return ProviderAttempt(
                stage=stage,
                provider=candidate.provider,
                started_at=started_at,
                outcome=outcome,
                duration_ms=(time.monotonic() - start) * 1000,
                error_type=type(error).__name__ if error else None,
                error_message=str(error) if error else None,
            )

        try:
            result = await asyncio.wait_for(candidate.call(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            return finish(AttemptOutcome.TIMEOUT, e), None
        except RunCancelled:
            raise
        except (SchemaValidationError, ProviderResponseError) as e:
            return finish(AttemptOutcome.INVALID, e), None
        except Exception as e:
            return finish(AttemptOutcome.ERROR, e), None

        if result is None or (is_valid is not None and not is_valid(result)):
            return finish(AttemptOutcome.INVALID, ProviderResponseError("Empty or invalid payload")), None

        return finish(AttemptOutcome.SUCCESS), result

    def _report(self, attempt: ProviderAttempt) -> None:
        """Send the attempt to telemetry without waiting for it."""
        if self.telemetry is None:
            return

        task = asyncio.create_task(
            self.telemetry.record(
                attempt.stage,
                attempt.provider,
                attempt.outcome.value,
                attempt.duration_ms,
            )
        )
        self._reports.add(task)
        task.add_done_callback(self._on_report_done)

    def _on_report_done(self, task: asyncio.Task) -> None:
        self._reports.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("telemetry_record_failed", error=str(error))

    async def drain(self) -> None:
        """Wait for outstanding telemetry reports."""
        if self._reports:
            await asyncio.gather(*list(self._reports), return_exceptions=True)
