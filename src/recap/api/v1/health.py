"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
reports whether the speech, completion and chat endpoints are configured;
no remote call is made, so the probe stays cheap while meetings are running.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.recap.config import AuthMode, get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running
    and how many meeting pipelines are armed.
    """
    settings = get_settings()
    manager = getattr(request.app.state, "meeting_manager", None)
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT.value,
        "active_meetings": manager.active_count if manager is not None else 0,
    }


def _check_configuration() -> dict:
    """Report which remote endpoints are configured. Returns check results dict."""
    settings = get_settings()
    checks: dict = {}

    checks["speech"] = "ok" if settings.WHISPER_ENDPOINT else "not_configured"
    checks["completion"] = (
        "ok"
        if settings.AZURE_OPENAI_ENDPOINT and settings.AZURE_OPENAI_DEPLOYMENT_NAME
        else "not_configured"
    )

    if settings.AUTH_MODE == AuthMode.entra:
        has_credentials = all(
            (settings.ENTRA_TENANT_ID, settings.ENTRA_CLIENT_ID, settings.ENTRA_CLIENT_SECRET)
        )
    else:
        has_credentials = bool(settings.WHISPER_KEY and settings.AZURE_OPENAI_API_KEY)
    checks["credentials"] = "ok" if has_credentials else "not_configured"

    # Summaries are only logged when no chat gateway is configured
    has_chat = settings.GOOGLE_SERVICE_ACCOUNT_FILE or settings.GOOGLE_SERVICE_ACCOUNT_JSON_B64
    checks["chat"] = "ok" if has_chat else "log_only"

    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: verifies the remote endpoints are configured.

    Returns 200 if speech, completion and credentials are all set, 503 otherwise.
    """
    checks = _check_configuration()
    all_ready = (
        checks["speech"] == "ok"
        and checks["completion"] == "ok"
        and checks["credentials"] == "ok"
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_ready else "degraded",
            "checks": checks,
        },
    )
