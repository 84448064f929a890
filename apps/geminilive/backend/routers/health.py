"""
Health and client bootstrap endpoints.
"""

from fastapi import APIRouter, Request

from apps.geminilive.backend import settings
from apps.geminilive.backend.schemas.messages import ConfigResponse, HealthResponse

router = APIRouter()


@router.get("/api/config", response_model=ConfigResponse)
async def get_config() -> ConfigResponse:
    """Voices and defaults the browser client needs to render its settings."""
    return ConfigResponse(
        default_voice=settings.DEFAULT_VOICE,
        voices=settings.VOICES,
        has_api_key=bool(settings.GEMINI_API_KEY),
    )


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    session_manager = request.app.state.session_manager
    return HealthResponse(active_sessions=await session_manager.get_session_count())
