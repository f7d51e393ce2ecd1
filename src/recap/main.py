"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events that build the meeting pipeline, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.recap.config import AuthMode, Settings, get_settings
from src.recap.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.recap.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.recap.api.v1.router import router as v1_router
from src.recap.meetings.audio_buffer import AudioBufferStore
from src.recap.meetings.delivery import SummaryPoster
from src.recap.meetings.events import EventBroadcaster
from src.recap.meetings.ingest import AudioFrameHandler
from src.recap.meetings.lifecycle import MeetingManager
from src.recap.meetings.transcript_log import TranscriptLog
from src.recap.services.entra import EntraTokenProvider
from src.recap.services.gsuite import ChatService, GSuiteAuthManager
from src.recap.services.speech import WhisperTranscriber
from src.recap.services.summarization import TranscriptSummarizer

log = structlog.get_logger(__name__)


def build_token_provider(settings: Settings) -> EntraTokenProvider | None:
    """Client-credentials provider in entra mode, None in apikey mode."""
    if settings.AUTH_MODE != AuthMode.entra:
        return None
    return EntraTokenProvider(
        tenant_id=settings.ENTRA_TENANT_ID,
        client_id=settings.ENTRA_CLIENT_ID,
        client_secret=settings.ENTRA_CLIENT_SECRET,
        scope=settings.COGNITIVE_SCOPE,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
    )


def build_chat_service(settings: Settings) -> ChatService | None:
    """Google Chat gateway when a service account is configured, else None."""
    sa_path = settings.get_service_account_path()
    if not sa_path:
        log.warning("chat.not_configured_summaries_log_only")
        return None
    return ChatService(GSuiteAuthManager(sa_path))


def build_meeting_manager(
    settings: Settings,
    audio_buffers: AudioBufferStore,
    transcript_log: TranscriptLog,
    broadcaster: EventBroadcaster,
    token_provider: EntraTokenProvider | None,
    chat_service: ChatService | None,
) -> MeetingManager:
    """Wire the speech, completion and delivery stages into a MeetingManager."""
    use_keys = settings.AUTH_MODE == AuthMode.apikey

    transcriber = WhisperTranscriber(
        endpoint=settings.WHISPER_ENDPOINT,
        api_key=settings.WHISPER_KEY if use_keys else "",
        token_provider=token_provider,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
    )
    summarizer = TranscriptSummarizer(
        endpoint=settings.azure_openai_base_endpoint,
        deployment=settings.AZURE_OPENAI_DEPLOYMENT_NAME,
        api_version=settings.AZURE_OPENAI_API_VERSION,
        api_key=settings.AZURE_OPENAI_API_KEY if use_keys else "",
        token_provider=token_provider,
        max_tokens=settings.SUMMARY_MAX_TOKENS,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
    )
    return MeetingManager(
        audio_buffers=audio_buffers,
        transcript_log=transcript_log,
        transcriber=transcriber,
        summarizer=summarizer,
        poster=SummaryPoster(chat_service),
        summary_interval_minutes=settings.SUMMARY_INTERVAL_MINUTES,
        broadcaster=broadcaster,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build the pipeline on startup, stop all meetings on shutdown."""
    settings = get_settings()
    configure_structlog()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    token_provider = build_token_provider(settings)
    if token_provider is not None:
        # Without a credential no tick can make progress, so fail fast
        await token_provider.get_token()
        log.info("startup.credential_acquired")

    audio_buffers = AudioBufferStore()
    transcript_log = TranscriptLog()
    broadcaster = EventBroadcaster()

    app.state.audio_buffers = audio_buffers
    app.state.transcript_log = transcript_log
    app.state.event_broadcaster = broadcaster
    app.state.frame_handler = AudioFrameHandler(audio_buffers)
    app.state.meeting_manager = build_meeting_manager(
        settings,
        audio_buffers,
        transcript_log,
        broadcaster,
        token_provider,
        build_chat_service(settings),
    )
    log.info(
        "startup.pipeline_ready",
        auth_mode=settings.AUTH_MODE.value,
        summary_interval_minutes=settings.SUMMARY_INTERVAL_MINUTES,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    manager = getattr(app.state, "meeting_manager", None)
    if manager is not None:
        await manager.shutdown()
        log.info("shutdown.meetings_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meeting Recap API",
        version="0.1.0",
        description="Live meeting transcription with periodic chat summaries",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
