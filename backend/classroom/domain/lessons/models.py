"""Domain models for live lesson rooms."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


Role = str
ActivityType = str

ACTIVITY_TYPES = ("drawing", "matching", "gap_fill", "quiz", "paginated_document", "video")

# Activity type names used by the lesson builder that map onto sync concerns.
ACTIVITY_TYPE_ALIASES: Dict[str, ActivityType] = {
    "pdf": "paginated_document",
    "whiteboard": "drawing",
    "image": "drawing",
    "text": "drawing",
}

# Session log entry types
CHAT_MESSAGE = "chat_message"
LESSON_UPDATE = "lesson_update"
LESSON_STATE = "lesson_state"
ZONE_STATE_UPDATE = "ZONE_STATE_UPDATE"

LESSON_NAVIGATION_TYPES = (LESSON_UPDATE, LESSON_STATE)


def canonical_activity_type(value: Optional[str]) -> Optional[ActivityType]:
    if not value:
        return None
    lowered = str(value).strip().lower()
    lowered = ACTIVITY_TYPE_ALIASES.get(lowered, lowered)
    return lowered if lowered in ACTIVITY_TYPES else None


@dataclass(slots=True)
class Participant:
    sid: str
    user_id: str
    role: Role
    display_name: Optional[str] = None
    connected_at: float = field(default_factory=time.time)

    def is_teacher(self) -> bool:
        return self.role == "teacher"

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "name": self.display_name,
        }


@dataclass(slots=True)
class Activity:
    id: Any
    type: ActivityType
    order: int = 0
    content: Any = None

    @classmethod
    def from_dict(cls, raw: dict) -> "Activity":
        return cls(
            id=raw.get("id"),
            type=canonical_activity_type(raw.get("type") or raw.get("activity_type")) or str(raw.get("type") or ""),
            order=int(raw.get("order") or 0),
            content=raw.get("content"),
        )


@dataclass(slots=True)
class LessonSnapshot:
    """A lesson as last broadcast. Replaced wholesale, never patched."""

    id: Any
    title: str
    activities: List[Activity] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> "LessonSnapshot":
        activities = [Activity.from_dict(item) for item in raw.get("activities") or [] if isinstance(item, dict)]
        return cls(id=raw.get("id"), title=str(raw.get("title") or ""), activities=activities, raw=dict(raw))

    def activity_at(self, index: int) -> Optional[Activity]:
        if 0 <= index < len(self.activities):
            return self.activities[index]
        return None

    def to_dict(self) -> dict:
        # The wire form is whatever the teacher broadcast, untouched.
        return dict(self.raw)


@dataclass(slots=True)
class ChatMessage:
    author: str
    text: str
    timestamp: Optional[str] = None

    def to_dict(self) -> dict:
        return {"name": self.author, "text": self.text, "time": self.timestamp}


@dataclass(slots=True)
class SessionLogEntry:
    type: str
    payload: Dict[str, Any]

    def to_dict(self) -> dict:
        return {"type": self.type, "payload": self.payload}


@dataclass(slots=True)
class MediaState:
    """Last authoritative media position seen from the teacher."""

    state: str
    t: float
    updated_at: float

    def position_at(self, now: float) -> float:
        if self.state == "playing":
            return self.t + max(0.0, now - self.updated_at)
        return self.t

    def to_payload(self, now: float) -> dict:
        return {"state": self.state, "t": round(self.position_at(now), 3)}
