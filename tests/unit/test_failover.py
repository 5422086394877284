"""Tests for primary/fallback provider invocation."""

import asyncio
import time

import pytest

from interview_core.errors import (
    AllProvidersExhausted,
    ErrorCode,
    ProviderError,
    RunCancelled,
    SchemaValidationError,
)
from interview_core.models import AttemptOutcome
from interview_core.pipeline.failover import FailoverInvoker, ProviderCall
from interview_core.pipeline.latency import LatencyTracker, TelemetrySink


def returning(value, calls, name, delay=0.0):
    async def call():
        calls.append(name)
        if delay:
            await asyncio.sleep(delay)
        return value
    return ProviderCall(name, call)


def raising(error, calls, name):
    async def call():
        calls.append(name)
        raise error
    return ProviderCall(name, call)


class SlowTelemetry(TelemetrySink):
    def __init__(self, delay: float):
        self.delay = delay
        self.records = []

    async def record(self, stage, provider, outcome, duration_ms, metadata=None):
        await asyncio.sleep(self.delay)
        self.records.append((stage, provider, outcome))


class BrokenTelemetry(TelemetrySink):
    async def record(self, stage, provider, outcome, duration_ms, metadata=None):
        raise RuntimeError("metrics backend down")


class TestFailoverInvoker:
    """Tests for FailoverInvoker."""

    @pytest.mark.asyncio
    async def test_primary_success_skips_fallback(self):
        """Test the fallback is not called when the primary succeeds."""
        calls = []
        invoker = FailoverInvoker()

        result, attempts = await invoker.invoke(
            "generation",
            returning("primary", calls, "openai"),
            returning("fallback", calls, "anthropic"),
            timeout_ms=200,
        )

        assert result == "primary"
        assert calls == ["openai"]
        assert len(attempts) == 1
        assert attempts[0].outcome == AttemptOutcome.SUCCESS
        assert attempts[0].provider == "openai"

    @pytest.mark.asyncio
    async def test_error_falls_back_once(self):
        """Test a primary exception leads to exactly one fallback call."""
        calls = []
        invoker = FailoverInvoker()

        result, attempts = await invoker.invoke(
            "generation",
            raising(ProviderError("503 from upstream"), calls, "openai"),
            returning("fallback", calls, "anthropic"),
            timeout_ms=200,
        )

        assert result == "fallback"
        assert calls == ["openai", "anthropic"]
        assert [a.outcome for a in attempts] == [AttemptOutcome.ERROR, AttemptOutcome.SUCCESS]
        assert attempts[0].error_type == "ProviderError"
        assert "503" in attempts[0].error_message

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        """Test a primary exceeding the per-call timeout is abandoned."""
        calls = []
        invoker = FailoverInvoker()

        start = time.monotonic()
        result, attempts = await invoker.invoke(
            "synthesis",
            returning("late", calls, "openai", delay=1.0),
            returning("fallback", calls, "elevenlabs"),
            timeout_ms=100,
        )
        elapsed = time.monotonic() - start

        assert result == "fallback"
        assert attempts[0].outcome == AttemptOutcome.TIMEOUT
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_invalid_payload_falls_back(self):
        """Test payloads rejected by the validator count as failures."""
        calls = []
        invoker = FailoverInvoker()

        result, attempts = await invoker.invoke(
            "transcription",
            returning("", calls, "openai_whisper"),
            returning("안녕하세요", calls, "deepgram"),
            timeout_ms=200,
            is_valid=lambda text: bool(text.strip()),
        )

        assert result == "안녕하세요"
        assert attempts[0].outcome == AttemptOutcome.INVALID

    @pytest.mark.asyncio
    async def test_none_payload_is_invalid(self):
        """Test a None result counts as an invalid payload."""
        calls = []
        invoker = FailoverInvoker()

        result, attempts = await invoker.invoke(
            "synthesis",
            returning(None, calls, "openai"),
            returning(b"audio", calls, "elevenlabs"),
            timeout_ms=200,
        )

        assert result == b"audio"
        assert attempts[0].outcome == AttemptOutcome.INVALID

    @pytest.mark.asyncio
    async def test_schema_error_is_invalid(self):
        """Test schema validation failures are classified as invalid."""
        calls = []
        invoker = FailoverInvoker()

        _, attempts = await invoker.invoke(
            "generation",
            raising(SchemaValidationError("missing evaluation"), calls, "openai"),
            returning("ok", calls, "anthropic"),
            timeout_ms=200,
        )

        assert attempts[0].outcome == AttemptOutcome.INVALID

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stage,code", [
        ("transcription", ErrorCode.STT_FAILED),
        ("generation", ErrorCode.LLM_FAILED),
        ("synthesis", ErrorCode.TTS_FAILED),
    ])
    async def test_both_fail_raises_exhausted(self, stage, code):
        """Test the stage error code when both providers fail."""
        calls = []
        invoker = FailoverInvoker()

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await invoker.invoke(
                stage,
                raising(ProviderError("primary down"), calls, "a"),
                raising(ProviderError("fallback down"), calls, "b"),
                timeout_ms=200,
            )

        error = exc_info.value
        assert error.code == code
        assert error.stage == stage
        assert [a.provider for a in error.attempts] == ["a", "b"]
        assert len(error.details["attempts"]) == 2

    @pytest.mark.asyncio
    async def test_cancelled_run_makes_no_further_calls(self):
        """Test a set cancel event stops the fallback from being called."""
        calls = []
        cancel_event = asyncio.Event()
        invoker = FailoverInvoker()

        async def primary():
            calls.append("openai")
            cancel_event.set()
            raise ProviderError("boom")

        with pytest.raises(RunCancelled):
            await invoker.invoke(
                "generation",
                ProviderCall("openai", primary),
                returning("fallback", calls, "anthropic"),
                timeout_ms=200,
                cancel_event=cancel_event,
            )

        assert calls == ["openai"]

    @pytest.mark.asyncio
    async def test_cancelled_before_start_calls_nothing(self):
        """Test no provider is called for an already-cancelled run."""
        calls = []
        cancel_event = asyncio.Event()
        cancel_event.set()
        invoker = FailoverInvoker()

        with pytest.raises(RunCancelled):
            await invoker.invoke(
                "transcription",
                returning("a", calls, "openai_whisper"),
                returning("b", calls, "deepgram"),
                timeout_ms=200,
                cancel_event=cancel_event,
            )

        assert calls == []


class TestTelemetryReporting:
    """Tests for attempt reporting."""

    @pytest.mark.asyncio
    async def test_attempts_reach_tracker(self):
        """Test every attempt is recorded with its outcome."""
        calls = []
        tracker = LatencyTracker()
        invoker = FailoverInvoker(telemetry=tracker)

        await invoker.invoke(
            "generation",
            raising(ProviderError("down"), calls, "openai"),
            returning("ok", calls, "anthropic"),
            timeout_ms=200,
        )
        await invoker.drain()

        recent = await tracker.get_recent()
        assert [(m["provider"], m["outcome"]) for m in recent] == [
            ("openai", "error"),
            ("anthropic", "success"),
        ]

    @pytest.mark.asyncio
    async def test_slow_telemetry_does_not_delay_result(self):
        """Test the result is returned before telemetry finishes."""
        calls = []
        telemetry = SlowTelemetry(delay=0.5)
        invoker = FailoverInvoker(telemetry=telemetry)

        start = time.monotonic()
        result, _ = await invoker.invoke(
            "synthesis",
            returning(b"audio", calls, "openai"),
            returning(b"other", calls, "elevenlabs"),
            timeout_ms=200,
        )
        elapsed = time.monotonic() - start

        assert result == b"audio"
        assert elapsed < 0.25
        assert telemetry.records == []

        await invoker.drain()
        assert telemetry.records == [("synthesis", "openai", "success")]

    @pytest.mark.asyncio
    async def test_telemetry_failure_is_not_raised(self):
        """Test a failing sink does not affect the stage result."""
        calls = []
        invoker = FailoverInvoker(telemetry=BrokenTelemetry())

        result, _ = await invoker.invoke(
            "transcription",
            returning("text", calls, "openai_whisper"),
            returning("other", calls, "deepgram"),
            timeout_ms=200,
        )
        await invoker.drain()

        assert result == "text"
