"""Pydantic schemas for the usage gate."""

from typing import Literal

from pydantic import BaseModel, Field

UsageSource = Literal["free_interview", "daily_quota", "credits"]


class UsageRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)
    cost: int | None = Field(None, gt=0)


class UsageCheckResponse(BaseModel):
    allowed: bool
    cost: int
    remaining: int
    free_interview_used: bool
    credits: int
    source: UsageSource | None = None


class UsageConsumeResponse(BaseModel):
    success: bool
    source: UsageSource
    cost: int
    credits: int
    remaining: int
    free_interview_used: bool
