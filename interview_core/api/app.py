"""
Interview Streaming Service - FastAPI Application.

Accepts a recorded answer and streams the interviewer's reply back as
Server-Sent Events.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from interview_core import __version__
from interview_core.analysis.voice import analyze_voice, generate_voice_feedback
from interview_core.api.schemas import (
    AnalyzeVoiceRequest,
    AnalyzeVoiceResponse,
    CacheCleanupResponse,
    CreateSessionRequest,
    HealthResponse,
    SessionResponse,
)
from interview_core.config import Settings, get_settings
from interview_core.errors import SessionInactive, SessionNotFound
from interview_core.logging import configure_logging
from interview_core.models import (
    EventType,
    InterviewSession,
    MessageRole,
    PipelineRequest,
    StreamEvent,
    WordTiming,
)
from interview_core.pipeline.cache import SynthesisCache
from interview_core.pipeline.failover import FailoverInvoker
from interview_core.pipeline.generation import ResponseGenerationStage
from interview_core.pipeline.latency import LatencyTracker
from interview_core.pipeline.orchestrator import StreamOrchestrator
from interview_core.pipeline.personas import PersonaRegistry
from interview_core.pipeline.synthesis import SpeechSynthesisStage
from interview_core.pipeline.transcription import AudioTranscriptionStage
from interview_core.providers import create_llm_provider, create_stt_provider, create_tts_provider
from interview_core.storage import BlobStore, InMemoryBlobStore, LocalBlobStore
from interview_core.store import ContextProvider, InMemoryMessageStore

logger = structlog.get_logger()


SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# =============================================================================
# Application State
# =============================================================================


class AppState:
    """Process-wide dependencies; created once and passed in explicitly."""

    def __init__(
        self,
        settings: Settings,
        orchestrator: StreamOrchestrator,
        cache: SynthesisCache,
        latency_tracker: LatencyTracker,
        store: InMemoryMessageStore,
        providers: Optional[List[Any]] = None,
    ):
        self.settings = settings
        self.orchestrator = orchestrator
        self.cache = cache
        self.latency_tracker = latency_tracker
        self.store = store
        self.providers = providers or []
        self.start_time = time.time()

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[InMemoryMessageStore] = None,
        context_provider: Optional[ContextProvider] = None,
    ) -> "AppState":
        """Wire providers, stages and the orchestrator from settings."""
        stt_primary = create_stt_provider(settings.primary_stt_provider, settings)
        stt_fallback = create_stt_provider(settings.fallback_stt_provider, settings, fallback=True)
        llm_primary = create_llm_provider(settings.primary_llm_provider, settings)
        llm_fallback = create_llm_provider(settings.fallback_llm_provider, settings, fallback=True)
        tts_primary = create_tts_provider(settings.primary_tts_provider, settings)
        tts_fallback = create_tts_provider(settings.fallback_tts_provider, settings, fallback=True)

        tracker = LatencyTracker()
        invoker = FailoverInvoker(telemetry=tracker)
        personas = PersonaRegistry()
        cache = SynthesisCache(
            store=_create_blob_store(settings),
            ttl_seconds=settings.cache.ttl_seconds,
            max_memory_items=settings.cache.max_memory_items,
            enable_memory_cache=settings.cache.enable_memory_cache,
            enable_storage_cache=settings.cache.enable_storage_cache,
        )

        orchestrator = StreamOrchestrator(
            transcription=AudioTranscriptionStage(
                stt_primary, stt_fallback, invoker, settings.timeouts.stt_ms
            ),
            generation=ResponseGenerationStage(
                llm_primary,
                llm_fallback,
                invoker,
                personas,
                timeout_ms=settings.timeouts.llm_ms,
                history_limit=settings.stream.history_limit,
                max_tokens=settings.models.max_tokens,
                structured_max_tokens=settings.models.structured_max_tokens,
                temperature=settings.models.temperature,
            ),
            synthesis=SpeechSynthesisStage(
                tts_primary,
                tts_fallback,
                invoker,
                timeout_ms=settings.timeouts.tts_ms,
                cache=cache,
                personas=personas,
                default_voice=settings.stream.default_voice,
            ),
            heartbeat_interval_ms=settings.stream.heartbeat_interval_ms,
            max_stream_duration_ms=settings.stream.max_stream_duration_ms,
            streaming_replies=settings.stream.streaming_replies,
            context_provider=context_provider,
        )

        return cls(
            settings=settings,
            orchestrator=orchestrator,
            cache=cache,
            latency_tracker=tracker,
            store=store or InMemoryMessageStore(),
            providers=[stt_primary, stt_fallback, llm_primary, llm_fallback, tts_primary, tts_fallback],
        )

    async def close(self) -> None:
        """Let background work finish, then close provider clients."""
        await self.orchestrator.drain()
        await self.cache.flush()
        for provider in self.providers:
            try:
                await provider.close()
            except Exception as e:
                logger.error("provider_close_failed", provider=provider.name, error=str(e))


def _create_blob_store(settings: Settings) -> Optional[BlobStore]:
    cache = settings.cache
    if not cache.enable_storage_cache:
        return None
    if cache.storage_backend == "memory":
        return InMemoryBlobStore(bucket=cache.bucket_name)
    return LocalBlobStore(
        base_path=cache.storage_path,
        bucket=cache.bucket_name,
        base_url=cache.public_base_url,
    )


# =============================================================================
# Application Factory
# =============================================================================


def create_app(settings: Optional[Settings] = None, state: Optional[AppState] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use; defaults to environment settings
        state: Prebuilt state (tests); otherwise built at startup
    """
    settings = settings or (state.settings if state else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.json_logs)
        owned = getattr(app.state, "interview", None) is None
        if owned:
            app.state.interview = AppState.from_settings(settings)

        logger.info(
            "interview_core_starting",
            port=settings.port,
            test_mode=settings.test_mode,
            stt=settings.primary_stt_provider.value,
            llm=settings.primary_llm_provider.value,
            tts=settings.primary_tts_provider.value,
        )

        yield

        logger.info("interview_core_stopping")
        if owned:
            await app.state.interview.close()

    app = FastAPI(
        title="Interview Streaming Service",
        description="""
        Real-time voice pipeline for AI mock interviews.

        Features:
        - STT -> LLM -> TTS with primary/fallback providers per stage
        - Token streaming over Server-Sent Events with heartbeats
        - Two-tier synthesis cache (memory + blob store)
        - Voice analysis of each answer
        """,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.interview = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app


def get_state(request: Request) -> AppState:
    """Dependency for the application state."""
    state = getattr(request.app.state, "interview", None)
    if state is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return state


# =============================================================================
# Routes
# =============================================================================


def _session_response(session: InterviewSession) -> SessionResponse:
    return SessionResponse(**session.to_dict())


def build_pipeline_request(
    session: InterviewSession,
    audio: bytes,
    history: list,
    structured: bool = False,
    voice: Optional[str] = None,
    speed: float = 1.0,
) -> PipelineRequest:
    """Map a session and uploaded answer to a pipeline run."""
    return PipelineRequest(
        audio=audio,
        session_id=session.id,
        persona_id=session.current_interviewer_id,
        language=session.language,
        position=session.job_type,
        industry=session.industry,
        difficulty=session.difficulty,
        history=tuple(history),
        user_id=session.user_id,
        resume_doc_id=session.resume_doc_id,
        turn_number=session.turn_count + 1,
        structured=structured,
        voice=voice,
        speed=speed,
    )


async def _persist(state: AppState, session: InterviewSession, event: StreamEvent) -> None:
    """Record the transcript and the completed reply as they stream past."""
    try:
        if event.event == EventType.TRANSCRIPT:
            await state.store.append_message(session.id, MessageRole.USER, event.data["text"])
        elif event.event == EventType.COMPLETE and event.data.get("fullText"):
            await state.store.append_message(
                session.id,
                MessageRole.ASSISTANT,
                event.data["fullText"],
                interviewer_id=session.current_interviewer_id,
                structured_response=event.data.get("structured"),
                latency_ms=event.data.get("latencyMs"),
            )
    except Exception as e:
        logger.warning(
            "message_persist_failed",
            session_id=session.id,
            stream_event=event.event.value,
            error_type=type(e).__name__,
            error=str(e),
        )


def register_routes(app: FastAPI) -> None:
    """Attach all endpoints."""

    @app.get("/health", response_model=HealthResponse)
    async def health_check(state: AppState = Depends(get_state)):
        """Health check endpoint."""
        settings = state.settings
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=__version__,
            uptime_seconds=state.uptime_seconds,
            test_mode=settings.test_mode,
            providers={
                "stt": {"primary": settings.primary_stt_provider.value, "fallback": settings.fallback_stt_provider.value},
                "llm": {"primary": settings.primary_llm_provider.value, "fallback": settings.fallback_llm_provider.value},
                "tts": {"primary": settings.primary_tts_provider.value, "fallback": settings.fallback_tts_provider.value},
            },
        )

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @app.post("/v1/sessions", response_model=SessionResponse, status_code=201)
    async def create_session(body: CreateSessionRequest, state: AppState = Depends(get_state)):
        """Open an interview session."""
        session = await state.store.create_session(
            user_id=body.user_id,
            job_type=body.job_type,
            industry=body.industry,
            difficulty=body.difficulty,
            interviewer_id=body.interviewer_id,
            resume_doc_id=body.resume_doc_id,
            language=body.language,
        )
        return _session_response(session)

    @app.get("/v1/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(session_id: str, state: AppState = Depends(get_state)):
        """Get session details."""
        session = await state.store.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return _session_response(session)

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    @app.post("/v1/interview/stream")
    async def stream_interview(
        audio: Optional[UploadFile] = File(default=None),
        session_id: Optional[str] = Form(default=None),
        structured: bool = Form(default=False),
        voice: Optional[str] = Form(default=None),
        speed: float = Form(default=1.0),
        state: AppState = Depends(get_state),
    ):
        """Run one interview turn and stream events as text/event-stream."""
        if audio is None or not session_id:
            raise HTTPException(status_code=400, detail="audio and session_id are required")

        try:
            session = await state.store.require_active_session(session_id)
        except SessionNotFound:
            raise HTTPException(status_code=404, detail="Session not found")
        except SessionInactive as e:
            raise HTTPException(status_code=400, detail=f"Session is not active ({e.details['status']})")

        audio_bytes = await audio.read()
        history = await state.store.get_history(session.id, limit=state.settings.stream.history_limit)
        request = build_pipeline_request(session, audio_bytes, history, structured, voice, speed)

        logger.info(
            "stream_started",
            session_id=session.id,
            run_id=request.run_id,
            audio_bytes=len(audio_bytes),
            persona_id=request.persona_id,
        )

        async def event_source() -> AsyncIterator[str]:
            async for event in state.orchestrator.run(request):
                await _persist(state, session, event)
                yield event.to_sse()

        return StreamingResponse(
            event_source(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/v1/interview/stream")
    async def stream_info(state: AppState = Depends(get_state)) -> Dict[str, Any]:
        """Describe the streaming endpoint."""
        settings = state.settings
        return {
            "endpoint": "/v1/interview/stream",
            "method": "POST",
            "contentType": "text/event-stream",
            "fields": ["audio", "session_id", "structured", "voice", "speed"],
            "events": [e.value for e in EventType],
            "heartbeatIntervalMs": settings.stream.heartbeat_interval_ms,
            "maxStreamDurationMs": settings.stream.max_stream_duration_ms,
            "testMode": settings.test_mode,
        }

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    @app.post("/v1/interview/analyze-voice", response_model=AnalyzeVoiceResponse)
    async def analyze_voice_endpoint(body: AnalyzeVoiceRequest):
        """Analyze pace, filler words and silences of one answer."""
        words = [
            WordTiming(word=w.word, start_ms=w.start * 1000, end_ms=w.end * 1000, confidence=w.confidence)
            for w in body.words
        ]
        analysis = analyze_voice(body.text, words, body.duration)
        return AnalyzeVoiceResponse(
            analysis=analysis.to_dict(),
            feedback=generate_voice_feedback(analysis),
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    @app.get("/v1/latency")
    async def latency_summary(state: AppState = Depends(get_state)) -> Dict[str, Any]:
        """Rolling latency statistics per stage and provider."""
        return await state.latency_tracker.get_summary()

    @app.get("/v1/cache/stats")
    async def cache_stats(state: AppState = Depends(get_state)) -> Dict[str, Any]:
        """Synthesis cache statistics."""
        return state.cache.stats().to_dict()

    @app.post("/v1/cache/cleanup", response_model=CacheCleanupResponse)
    async def cache_cleanup(state: AppState = Depends(get_state)):
        """Delete durable cache entries older than the TTL."""
        deleted = await state.cache.cleanup_expired()
        return CacheCleanupResponse(deleted=deleted)
