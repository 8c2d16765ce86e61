"""Playback API schemas for session lifecycle requests"""

from typing import Optional
from pydantic import BaseModel, Field


class PlayStartRequest(BaseModel):
    """Request to open a playback session"""
    user_id: str = Field(..., min_length=1)
    track_id: str = Field(..., min_length=1)
    tier: str = "free"  # Unknown tiers fall back to free


class PlayStartResponse(BaseModel):
    """Session id plus the stream descriptor"""
    success: bool = True
    session_id: str
    stream_url: str
    config: dict
    tier: str
    state: str
    started_at: str


class PlayProgressRequest(BaseModel):
    """Progress report from the client player"""
    session_id: str = Field(..., min_length=1)
    current_time: float = Field(..., ge=0)
    total_duration: Optional[float] = Field(None, gt=0)


class PlayProgressResponse(BaseModel):
    success: bool = True
    session_id: str
    state: str
    current_time: float
    total_duration: Optional[float] = None
    max_duration_seconds: Optional[int] = None
    preview_limit_reached: bool  # Client must stop playback when True
    eligible: bool


class PlayEndRequest(BaseModel):
    """Request to finish a playback session"""
    session_id: str = Field(..., min_length=1)


class PlayEndResponse(BaseModel):
    success: bool = True
    session_id: str
    state: str
    valid: bool
    reason: Optional[str] = None
    listened_seconds: float
    total_duration: Optional[float] = None
    ended_at: Optional[str] = None
    payout: Optional[str] = None  # Decimal string, set only for valid plays
