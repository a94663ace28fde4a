from __future__ import annotations

from fastapi import APIRouter, Request

from gamemaster.schemas.common import HealthResponse

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    provider_service = request.app.state.provider_service
    memory_service = request.app.state.memory_service
    return HealthResponse(
        status="ok",
        llm_provider=provider_service.runtime_config.provider,
        embed_provider=memory_service.embedder.provider,
    )
