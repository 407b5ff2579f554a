"""Pydantic schemas for the /lesson socket frames."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

VIDEO_EVENTS = ("VIDEO_PLAY", "VIDEO_PAUSE", "VIDEO_SEEK", "VIDEO_SYNC", "VIDEO_STATE")
DRAW_TOOLS = ("pencil", "eraser", "rect", "circle")


class ChatMessagePayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    text: str = Field(..., min_length=1, max_length=4000)
    time: Optional[str] = Field(default=None, max_length=64)


class LessonUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lesson: Optional[Dict[str, Any]] = None
    slide_index: Optional[int] = Field(default=None, ge=0, alias="slideIndex")


class ZoneActionPayload(BaseModel):
    """`{activity_type, action, ...payload}`; extra keys carry the partial state."""

    model_config = ConfigDict(extra="allow")

    activity_type: str = Field(..., min_length=1, max_length=40)
    action: str = Field(..., min_length=1, max_length=40)

    def data(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class VideoPayload(BaseModel):
    t: float = Field(..., ge=0)
    state: Optional[Literal["playing", "paused"]] = None


class DrawShape(BaseModel):
    """A shape in normalized unit coordinates. Used for validation only."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=80)
    tool: Literal["pencil", "eraser", "rect", "circle"]
    stroke: str = Field(..., max_length=32)
    strokeWidth: float = Field(..., ge=0)
    points: Optional[List[float]] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    radius: Optional[float] = Field(default=None, ge=0)


shape_list_adapter = TypeAdapter(List[DrawShape])


class ParticipantSummary(BaseModel):
    user_id: str
    role: str
    name: Optional[str] = None


class RoomStateView(BaseModel):
    lesson_id: str
    lesson: Optional[Dict[str, Any]] = None
    slide_index: int
    zone_activity_type: Optional[str] = None
    zone_keys: List[str] = Field(default_factory=list)
    participants: List[ParticipantSummary] = Field(default_factory=list)
    log_entries: int
    media: Optional[Dict[str, Any]] = None
