from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from gamemaster.memory.types import MemoryCategory, MemoryFilters
from gamemaster.schemas.memory import (
    MemoryCleanupRequest,
    MemoryCleanupResponse,
    MemoryCreateRequest,
    MemoryEntryOut,
    MemoryListResponse,
    MemorySearchRequest,
    MemorySearchResponse,
    MemoryStatsResponse,
    SimilarityResultOut,
)
from gamemaster.services.memory_service import (
    MemoryNotFoundError,
    MemoryService,
    get_memory_service,
)

router = APIRouter(prefix="/api/memory", tags=["memory"])


@router.post(
    "/{campaign_id}", response_model=MemoryEntryOut, status_code=status.HTTP_201_CREATED
)
async def create_memory(
    campaign_id: str,
    payload: MemoryCreateRequest,
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemoryEntryOut:
    entry = await memory_service.create(
        payload.content,
        payload.category,
        payload.importance,
        payload.tags,
        campaign_id=campaign_id,
        user_id=payload.user_id,
    )
    return MemoryEntryOut.model_validate(entry)


@router.post("/{campaign_id}/search", response_model=MemorySearchResponse)
async def search_memories(
    campaign_id: str,
    payload: MemorySearchRequest,
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemorySearchResponse:
    """Semantic search over the campaign's active memories."""

    results = await memory_service.search(
        payload.query,
        MemoryFilters(
            campaign_id=campaign_id,
            user_id=payload.user_id,
            category=payload.category,
            min_importance=payload.min_importance,
        ),
        limit=payload.limit,
        threshold=payload.threshold,
    )
    return MemorySearchResponse(
        results=[SimilarityResultOut.model_validate(result) for result in results]
    )


@router.get("/entry/{memory_id}", response_model=MemoryEntryOut)
async def get_memory(
    memory_id: str,
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemoryEntryOut:
    try:
        entry = await memory_service.get(memory_id)
    except MemoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Memory not found") from exc
    return MemoryEntryOut.model_validate(entry)


@router.delete("/entry/{memory_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_memory(
    memory_id: str,
    memory_service: MemoryService = Depends(get_memory_service),
) -> None:
    """Soft-delete: the entry stays addressable but leaves search results."""

    try:
        await memory_service.deactivate(memory_id)
    except MemoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Memory not found") from exc


@router.get("/{campaign_id}/stats", response_model=MemoryStatsResponse)
async def memory_stats(
    campaign_id: str,
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemoryStatsResponse:
    return MemoryStatsResponse.model_validate(await memory_service.stats(campaign_id))


@router.post("/{campaign_id}/cleanup", response_model=MemoryCleanupResponse)
async def cleanup_memories(
    campaign_id: str,
    request: Request,
    payload: Optional[MemoryCleanupRequest] = None,
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemoryCleanupResponse:
    """Deactivate low-value memories outside the retained set."""

    settings = request.app.state.settings
    options = payload or MemoryCleanupRequest()
    keep_count = (
        options.keep_count
        if options.keep_count is not None
        else settings.memory_cleanup_keep_count
    )
    min_importance = (
        options.min_importance
        if options.min_importance is not None
        else settings.memory_cleanup_min_importance
    )
    deactivated = await memory_service.cleanup(
        campaign_id, keep_count=keep_count, min_importance=min_importance
    )
    return MemoryCleanupResponse(deactivated=deactivated)


@router.get("/{campaign_id}", response_model=MemoryListResponse)
async def list_memories(
    campaign_id: str,
    category: Optional[MemoryCategory] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    memory_service: MemoryService = Depends(get_memory_service),
) -> MemoryListResponse:
    entries, total = await memory_service.list_campaign_memories(
        campaign_id, category=category, limit=limit, offset=offset
    )
    return MemoryListResponse(
        items=[MemoryEntryOut.model_validate(entry) for entry in entries],
        total=total,
        limit=limit,
        offset=offset,
    )
