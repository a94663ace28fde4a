from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from gamemaster.schemas.tools import (
    DiceRollRequest,
    DiceRollResponse,
    StatusTagListResponse,
    StatusTagOut,
    StatusTagUpdateRequest,
)
from gamemaster.services.game_tools import (
    DiceExpressionError,
    GameToolService,
    StatusTagChange,
    get_game_tool_service,
)

router = APIRouter(prefix="/api/tools", tags=["tools"])


@router.post("/dice", response_model=DiceRollResponse)
async def roll_dice(
    payload: DiceRollRequest,
    tools: GameToolService = Depends(get_game_tool_service),
) -> DiceRollResponse:
    try:
        roll = await tools.roll_dice(
            payload.expression,
            difficulty=payload.difficulty,
            advantage=payload.advantage,
            disadvantage=payload.disadvantage,
        )
    except DiceExpressionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return DiceRollResponse.model_validate(roll)


@router.post("/status/{entity_id}", response_model=StatusTagListResponse)
async def update_status_tags(
    entity_id: str,
    payload: StatusTagUpdateRequest,
    tools: GameToolService = Depends(get_game_tool_service),
) -> StatusTagListResponse:
    """Apply tag changes; the response lists the tags now attached."""

    changes = [
        StatusTagChange(
            name=item.name,
            description=item.description,
            type=item.type,
            action=item.action,
            value=item.value,
            duration=item.duration,
        )
        for item in payload.tags
    ]
    await tools.update_status_tags(entity_id, changes)
    tags = await tools.get_status_tags(entity_id)
    return StatusTagListResponse(
        entity_id=entity_id, tags=[StatusTagOut.model_validate(tag) for tag in tags]
    )


@router.get("/status/{entity_id}", response_model=StatusTagListResponse)
async def get_status_tags(
    entity_id: str,
    tools: GameToolService = Depends(get_game_tool_service),
) -> StatusTagListResponse:
    await tools.clear_expired_tags()
    tags = await tools.get_status_tags(entity_id)
    return StatusTagListResponse(
        entity_id=entity_id, tags=[StatusTagOut.model_validate(tag) for tag in tags]
    )
