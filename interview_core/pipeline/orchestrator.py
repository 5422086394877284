"""
Stream Orchestrator - sequences one interview turn.

Runs transcription, generation and synthesis in order and turns their
progress into an ordered stream of events for the client:

    start -> state(transcribing) -> transcript -> state(generating)
          -> chunk* -> state(synthesizing) -> audio -> state(completed)
          -> complete -> done

A failed stage ends the run with ``state(failed) -> error -> done``. When
the wall-clock budget runs out the run ends with ``warning -> complete``
carrying whatever reply text exists. Every run ends with exactly one
``done``.
"""

import asyncio
import base64
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Set, TypeVar

import structlog

from interview_core.analysis.voice import analyze_voice, generate_voice_feedback
from interview_core.errors import (
    AllProvidersExhausted,
    EmptyAudioError,
    ErrorCode,
    PipelineError,
    StreamTimeoutExceeded,
)
from interview_core.models import (
    EventType,
    GeneratedReply,
    PipelineRequest,
    PipelineState,
    ProviderAttempt,
    Stage,
    StreamEvent,
    SynthesizedAudio,
    TranscriptionResult,
    now_ms,
)
from interview_core.pipeline.generation import GenerationPrompt, ReplyStream, ResponseGenerationStage
from interview_core.pipeline.synthesis import SpeechSynthesisStage
from interview_core.pipeline.transcription import AudioTranscriptionStage
from interview_core.providers.base import LLMDelta
from interview_core.store import ContextProvider

logger = structlog.get_logger()

T = TypeVar("T")


# Codes a client may see; anything else is reported as INTERNAL_ERROR.
CLIENT_ERROR_MESSAGES = {
    ErrorCode.STT_FAILED: "Speech recognition failed. Please try answering again.",
    ErrorCode.LLM_FAILED: "The interviewer could not respond. Please try again.",
    ErrorCode.TTS_FAILED: "Speech synthesis failed. Please try again.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred.",
}
EMPTY_AUDIO_MESSAGE = "No audio was received."


async def _next_delta(deltas: AsyncIterator[LLMDelta]) -> Optional[LLMDelta]:
    try:
        return await deltas.__anext__()
    except StopAsyncIteration:
        return None


async def _discard_stream(deltas: Any, stream: ReplyStream) -> None:
    await deltas.aclose()
    await stream.aclose()


class _PipelineRun:
    """Mutable state owned by a single run."""

    def __init__(self, request: PipelineRequest, budget_ms: float, background: Set[asyncio.Task]):
        self.request = request
        self.budget_ms = budget_ms
        self.started = time.monotonic()
        self.deadline = self.started + budget_ms / 1000
        self.last_event_at = self.started
        self.state = PipelineState.STARTED
        self.cancel_event = asyncio.Event()

        self.transcript: Optional[TranscriptionResult] = None
        self.chunks: List[str] = []
        self.provider: Optional[str] = None
        self.model: Optional[str] = None
        self.reply: Optional[GeneratedReply] = None
        self.audio: Optional[SynthesizedAudio] = None
        self.attempts: Dict[str, List[ProviderAttempt]] = {}

        self.analysis_task: Optional[asyncio.Task] = None
        self.analysis_emitted = False
        self.synthesis_task: Optional[asyncio.Task] = None

        self._seq = 0
        self._background = background

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def remaining_s(self) -> float:
        return self.deadline - time.monotonic()

    @property
    def partial_text(self) -> str:
        if self.reply is not None:
            return self.reply.text
        return "".join(self.chunks)

    def event(self, event_type: EventType, data: Dict[str, Any]) -> StreamEvent:
        self._seq += 1
        self.last_event_at = time.monotonic()
        return StreamEvent(event=event_type, data=data, id=str(self._seq))

    def transition(self, state: PipelineState) -> StreamEvent:
        self.state = state
        return self.event(EventType.STATE, {"state": state.value, "elapsedMs": round(self.elapsed_ms())})

    def spawn(self, coro: Awaitable[T]) -> "asyncio.Task[T]":
        """
        Schedule work that outlives the consumer.

        Tasks are not cancelled when the client disconnects; their results
        are discarded.
        """
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled():
            # mark the exception retrieved; the run reports it if still listening
            task.exception()

    def cancel(self) -> None:
        self.cancel_event.set()


class StreamOrchestrator:
    """
    Runs one interview turn end to end.

    Architecture:
    ```
    audio ──► AudioTranscriptionStage ──► transcript ──┬──► voice analysis
                                                       ▼
                              ResponseGenerationStage (stream | full)
                                                       │
                                                       ▼
                              SpeechSynthesisStage ──► cache ──► audio
    ```

    Each stage runs in its own task; the event generator waits on it while
    emitting heartbeats and watching the run deadline. Per-run state lives
    in ``_PipelineRun``; nothing mutable is shared between runs except the
    synthesis cache behind the synthesis stage.
    """

    def __init__(
        self,
        transcription: AudioTranscriptionStage,
        generation: ResponseGenerationStage,
        synthesis: SpeechSynthesisStage,
        heartbeat_interval_ms: float = 15000,
        max_stream_duration_ms: float = 55000,
        streaming_replies: bool = True,
        context_provider: Optional[ContextProvider] = None,
        retrieval_timeout_ms: float = 3000,
        voice_analysis: bool = True,
    ):
        self.transcription = transcription
        self.generation = generation
        self.synthesis = synthesis
        self.heartbeat_interval_ms = heartbeat_interval_ms
        self.max_stream_duration_ms = max_stream_duration_ms
        self.streaming_replies = streaming_replies
        self.context_provider = context_provider
        self.retrieval_timeout_ms = retrieval_timeout_ms
        self.voice_analysis = voice_analysis
        self._background: Set[asyncio.Task] = set()

    async def run(self, request: PipelineRequest) -> AsyncIterator[StreamEvent]:
        """
        Execute a pipeline run and yield its events.

        Closing the generator (client disconnect) stops further provider
        calls for the run. Calls already in flight finish in the background.
        """
        run = _PipelineRun(request, self.max_stream_duration_ms, self._background)
        try:
            async with aclosing(self._run_events(run)) as events:
                async for event in events:
                    yield event
        finally:
            run.cancel()

    async def drain(self) -> None:
        """Wait for background work left behind by finished runs."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def _run_events(self, run: _PipelineRun) -> AsyncIterator[StreamEvent]:
        request = run.request
        log = logger.bind(run_id=request.run_id, session_id=request.session_id)

        yield run.event(EventType.START, {
            "model": self.generation.primary.model,
            "personaId": request.persona_id,
            "runId": request.run_id,
            "timestamp": now_ms(),
        })

        try:
            async with aclosing(self._pipeline(run)) as events:
                async for event in events:
                    yield event

        except StreamTimeoutExceeded as e:
            log.warning(
                "stream_budget_exceeded",
                state=run.state.value,
                elapsed_ms=round(e.elapsed_ms),
                partial_chars=len(run.partial_text),
            )
            yield run.event(EventType.WARNING, {
                "message": "Maximum stream duration reached; finishing with the partial reply",
                "elapsedMs": round(e.elapsed_ms),
            })
            yield run.event(EventType.COMPLETE, self._complete_data(run, truncated=run.reply is None or run.reply.truncated))

        except PipelineError as e:
            code = e.code if e.code in CLIENT_ERROR_MESSAGES else ErrorCode.INTERNAL_ERROR
            message = CLIENT_ERROR_MESSAGES[code]
            if isinstance(e, EmptyAudioError):
                message = EMPTY_AUDIO_MESSAGE
            log.warning(
                "run_failed",
                state=run.state.value,
                code=code,
                error_type=type(e).__name__,
                error=e.message,
                attempts=len(e.attempts) if isinstance(e, AllProvidersExhausted) else 0,
            )
            yield run.transition(PipelineState.FAILED)
            yield run.event(EventType.ERROR, {
                "code": code,
                "message": message,
                "stage": e.stage,
            })

        except Exception:
            log.exception("run_crashed", state=run.state.value)
            yield run.transition(PipelineState.FAILED)
            yield run.event(EventType.ERROR, {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": CLIENT_ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR],
            })

        log.info("run_finished", state=run.state.value, elapsed_ms=round(run.elapsed_ms()))
        yield run.event(EventType.DONE, {"timestamp": now_ms()})

    async def _pipeline(self, run: _PipelineRun) -> AsyncIterator[StreamEvent]:
        request = run.request

        # Transcribing
        yield run.transition(PipelineState.TRANSCRIBING)
        task = run.spawn(self.transcription.run(request.audio, request.language, run.cancel_event))
        async for event in self._wait(run, task):
            yield event
        transcript, attempts = task.result()
        run.transcript = transcript
        run.attempts[Stage.TRANSCRIPTION.value] = attempts

        yield run.event(EventType.TRANSCRIPT, {
            "text": transcript.text,
            "durationMs": transcript.duration_ms,
            "provider": transcript.provider,
            "confidence": transcript.confidence,
            "wordCount": len(transcript.text.split()),
        })

        if self.voice_analysis and transcript.words:
            run.analysis_task = run.spawn(asyncio.to_thread(
                analyze_voice,
                transcript.text,
                transcript.words,
                transcript.duration_ms / 1000 or None,
            ))

        retrieval_context = request.retrieval_context
        if retrieval_context is None and request.resume_doc_id and self.context_provider:
            task = run.spawn(self._fetch_context(request, transcript.text))
            async for event in self._wait(run, task):
                yield event
            retrieval_context = task.result()

        # Generating
        yield run.transition(PipelineState.GENERATING)
        prompt = self.generation.build_prompt(
            transcript.text,
            request.persona_id,
            position=request.position,
            industry=request.industry,
            difficulty=request.difficulty,
            history=request.history,
            retrieval_context=retrieval_context,
            turn_number=request.turn_number,
            structured=request.structured,
        )

        if self.streaming_replies and not request.structured:
            reply_events = self._stream_reply(run, prompt)
        else:
            reply_events = self._full_reply(run, prompt)
        async with aclosing(reply_events) as events:
            async for event in events:
                yield event

        for event in self._analysis_events(run):
            yield event

        # Synthesizing
        yield run.transition(PipelineState.SYNTHESIZING)
        task = run.synthesis_task or run.spawn(self._synthesize(run))
        async for event in self._wait(run, task):
            yield event
        audio, attempts = task.result()
        run.audio = audio
        run.attempts[Stage.SYNTHESIS.value] = attempts

        yield run.event(EventType.AUDIO, {
            "audio": base64.b64encode(audio.audio).decode("ascii"),
            "contentType": audio.content_type,
            "provider": audio.provider,
            "cacheHit": audio.cache_hit,
            "cacheKey": audio.cache_key,
            "url": audio.url,
        })

        for event in self._analysis_events(run):
            yield event

        yield run.transition(PipelineState.COMPLETED)
        yield run.event(EventType.COMPLETE, self._complete_data(run, truncated=run.reply.truncated))

    # -------------------------------------------------------------------------
    # Generation modes
    # -------------------------------------------------------------------------

    async def _full_reply(self, run: _PipelineRun, prompt: GenerationPrompt) -> AsyncIterator[StreamEvent]:
        task = run.spawn(self.generation.generate(prompt, run.cancel_event))
        async for event in self._wait(run, task):
            yield event
        reply, attempts = task.result()
        run.reply = reply
        run.provider, run.model = reply.provider, reply.model
        run.attempts[Stage.GENERATION.value] = attempts

        # synthesis overlaps with delivery of the reply text
        run.synthesis_task = run.spawn(self._synthesize(run))

        run.chunks.append(reply.text)
        yield run.event(EventType.CHUNK, {"content": reply.text, "index": 0, "finishReason": "stop"})

    async def _stream_reply(self, run: _PipelineRun, prompt: GenerationPrompt) -> AsyncIterator[StreamEvent]:
        generation_started = time.monotonic()

        task = run.spawn(self.generation.open_stream(prompt, run.cancel_event))
        async for event in self._wait(run, task):
            yield event
        stream, attempts = task.result()
        run.provider, run.model = stream.provider, stream.model
        run.attempts[Stage.GENERATION.value] = attempts

        deltas = stream.deltas()
        pending: Optional[asyncio.Task] = None
        try:
            while True:
                pending = run.spawn(_next_delta(deltas))
                async for event in self._wait(run, pending):
                    yield event
                delta = pending.result()
                pending = None
                if delta is None:
                    break
                if not delta.content and not delta.finish_reason:
                    continue

                # a content-less finish delta becomes an empty final chunk
                data: Dict[str, Any] = {"content": delta.content, "index": len(run.chunks)}
                if delta.finish_reason:
                    data["finishReason"] = delta.finish_reason
                run.chunks.append(delta.content)
                yield run.event(EventType.CHUNK, data)
        finally:
            self._release_stream(run, deltas, stream, pending)

        text = "".join(run.chunks).strip()
        if not text:
            raise AllProvidersExhausted(Stage.GENERATION.value, attempts, "Stream produced no text")

        run.reply = GeneratedReply(
            text=text,
            provider=stream.provider,
            model=stream.model,
            latency_ms=(time.monotonic() - generation_started) * 1000,
            truncated=stream.interrupted,
        )

    def _release_stream(
        self,
        run: _PipelineRun,
        deltas: Any,
        stream: ReplyStream,
        pending: Optional[asyncio.Task],
    ) -> None:
        """Close an abandoned stream once no read is in progress."""
        if pending is None or pending.done():
            run.spawn(_discard_stream(deltas, stream))
        else:
            pending.add_done_callback(lambda _: run.spawn(_discard_stream(deltas, stream)))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _synthesize(self, run: _PipelineRun):
        request = run.request
        return await self.synthesis.run(
            run.reply.text,
            voice=request.voice,
            speed=request.speed,
            persona_id=request.persona_id,
            cancel_event=run.cancel_event,
        )

    async def _fetch_context(self, request: PipelineRequest, query: str) -> Optional[str]:
        """Retrieve resume context. Any failure means no context."""
        try:
            return await asyncio.wait_for(
                self.context_provider.get_context(request.user_id, query, request.resume_doc_id),
                timeout=self.retrieval_timeout_ms / 1000,
            )
        except Exception as e:
            logger.warning(
                "retrieval_failed",
                doc_id=request.resume_doc_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

    async def _wait(self, run: _PipelineRun, task: asyncio.Task) -> AsyncIterator[StreamEvent]:
        """
        Wait for ``task``, yielding heartbeats when the stream goes quiet.

        Raises:
            StreamTimeoutExceeded: The run deadline passed first
        """
        interval = self.heartbeat_interval_ms / 1000
        while True:
            remaining = run.remaining_s()
            if remaining <= 0:
                raise StreamTimeoutExceeded(run.elapsed_ms(), self.max_stream_duration_ms)
            if task.done():
                return

            until_heartbeat = interval - (time.monotonic() - run.last_event_at)
            if until_heartbeat <= 0:
                yield run.event(EventType.HEARTBEAT, {"timestamp": now_ms()})
                continue

            await asyncio.wait({task}, timeout=min(until_heartbeat, remaining))

    def _analysis_events(self, run: _PipelineRun) -> List[StreamEvent]:
        task = run.analysis_task
        if task is None or run.analysis_emitted or not task.done():
            return []

        run.analysis_emitted = True
        if task.cancelled():
            return []
        if task.exception() is not None:
            logger.warning("voice_analysis_failed", run_id=run.request.run_id, error=str(task.exception()))
            return []

        analysis = task.result()
        return [run.event(EventType.ANALYSIS, {
            **analysis.to_dict(),
            "feedback": generate_voice_feedback(analysis),
        })]

    def _complete_data(self, run: _PipelineRun, truncated: bool) -> Dict[str, Any]:
        reply = run.reply
        data: Dict[str, Any] = {
            "fullText": run.partial_text,
            "latencyMs": round(run.elapsed_ms()),
            "chunkCount": len(run.chunks),
            "provider": run.provider,
            "model": run.model,
            "truncated": truncated,
        }
        if reply is not None and reply.is_structured:
            data["evaluation"] = reply.evaluation.to_dict()
            data["structured"] = reply.structured_fields()
        return data
