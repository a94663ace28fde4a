from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from gamemaster.schemas.common import APIModel


class DiceRollRequest(APIModel):
    expression: str = Field(min_length=1, max_length=32)
    difficulty: Optional[int] = Field(default=None, ge=1, le=100)
    advantage: bool = False
    disadvantage: bool = False


class DiceRollResponse(APIModel):
    expression: str
    rolls: list[int]
    total: int
    modifier: int
    final_total: int
    success: Optional[bool] = None
    critical_success: Optional[bool] = None
    critical_failure: Optional[bool] = None


class StatusTagChangeIn(APIModel):
    name: str = Field(min_length=1, max_length=64)
    description: str = Field(default="", max_length=500)
    type: Literal["buff", "debuff", "condition", "injury", "attribute"]
    action: Literal["add", "update", "remove"]
    value: Optional[float] = None
    duration: Optional[int] = Field(default=None, ge=0)


class StatusTagUpdateRequest(APIModel):
    tags: list[StatusTagChangeIn] = Field(min_length=1, max_length=50)


class StatusTagOut(APIModel):
    id: str
    entity_id: str
    name: str
    description: str
    type: str
    value: Optional[float] = None
    duration: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class StatusTagListResponse(APIModel):
    entity_id: str
    tags: list[StatusTagOut]
