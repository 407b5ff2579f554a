"""In-memory room state store.

One RoomState per lesson session, owned by the RoomRegistry. Every mutation
runs under the room's lock via `RoomRegistry.mutate`, so a concurrently
arriving read never observes a half-applied merge.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Tuple

from classroom.domain.lessons import models, zones
from classroom.domain.lessons.policy import LessonPolicyError, ensure_slide_in_range
from classroom.domain.lessons.schemas import ChatMessagePayload, LessonUpdatePayload
from classroom.obs import metrics as obs_metrics
from classroom.settings import settings

logger = logging.getLogger(__name__)

ZONE_ACTION = "ZONE_ACTION"


@dataclass
class RoomState:
	lesson_id: str
	lesson: Optional[models.LessonSnapshot] = None
	slide_index: int = 0
	zone: Dict[str, object] = field(default_factory=dict)
	log: List[models.SessionLogEntry] = field(default_factory=list)
	participants: Dict[str, models.Participant] = field(default_factory=dict)
	media: Optional[models.MediaState] = None
	zone_entries: int = 0

	def history(self) -> List[dict]:
		return [entry.to_dict() for entry in self.log]

	def participant(self, sid: str) -> Optional[models.Participant]:
		return self.participants.get(sid)

	def by_role(self, role: str) -> Optional[models.Participant]:
		for participant in self.participants.values():
			if participant.role == role:
				return participant
		return None

	def roster(self) -> List[dict]:
		ordered = sorted(self.participants.values(), key=lambda p: (p.role != "teacher", p.connected_at))
		return [participant.to_dict() for participant in ordered]

	def _append(self, entry: models.SessionLogEntry) -> None:
		self.log.append(entry)
		if entry.type != ZONE_ACTION:
			return
		self.zone_entries += 1
		limit = max(1, settings.session_log_max_zone_entries)
		while self.zone_entries > limit:
			for idx, existing in enumerate(self.log):
				if existing.type == ZONE_ACTION:
					del self.log[idx]
					self.zone_entries -= 1
					break

	def apply_zone(self, update: zones.ZoneUpdate) -> Dict[str, object]:
		"""Merge, persist, log. Returns the full merged zone for broadcast."""
		merged = zones.merge_zone(self.zone, update)
		self.zone = merged
		logged = {"activity_type": update.activity_type, "action": update.action}
		logged.update(update.partial())
		self._append(models.SessionLogEntry(type=ZONE_ACTION, payload=logged))
		return dict(merged)

	def apply_lesson(self, payload: LessonUpdatePayload) -> Dict[str, object]:
		"""Replace the lesson wholesale and move to the requested slide."""
		lesson = models.LessonSnapshot.from_dict(payload.lesson) if payload.lesson is not None else self.lesson
		slide_index = payload.slide_index if payload.slide_index is not None else 0
		ensure_slide_in_range(lesson, slide_index)
		previous_id = self.lesson.id if self.lesson is not None else None
		current_id = lesson.id if lesson is not None else None
		if current_id != previous_id or slide_index != self.slide_index:
			# A new slide means a new zone; nothing from the old activity survives.
			self.zone = {}
		self.lesson = lesson
		self.slide_index = slide_index
		broadcast = {
			"lesson": lesson.to_dict() if lesson is not None else None,
			"slideIndex": slide_index,
		}
		self._append(models.SessionLogEntry(type=models.LESSON_UPDATE, payload=broadcast))
		return dict(broadcast)

	def append_chat(self, payload: ChatMessagePayload) -> Dict[str, object]:
		message = models.ChatMessage(author=payload.name, text=payload.text, timestamp=payload.time)
		wire = message.to_dict()
		self._append(models.SessionLogEntry(type=models.CHAT_MESSAGE, payload=wire))
		return dict(wire)

	def record_media(self, event: str, t: float, state: Optional[str] = None, *, now: Optional[float] = None) -> None:
		now = time.time() if now is None else now
		if event in ("VIDEO_PLAY", "VIDEO_SYNC"):
			resolved = "playing"
		elif event == "VIDEO_PAUSE":
			resolved = "paused"
		elif event == "VIDEO_STATE" and state:
			resolved = state
		else:
			resolved = self.media.state if self.media is not None else "paused"
		self.media = models.MediaState(state=resolved, t=float(t), updated_at=now)


class RoomRegistry:
	"""Owns every live room, keyed by lesson session id."""

	def __init__(self) -> None:
		self._rooms: Dict[str, RoomState] = {}
		self._locks: Dict[str, asyncio.Lock] = {}
		self._guard = asyncio.Lock()

	def get(self, lesson_id: str) -> Optional[RoomState]:
		return self._rooms.get(lesson_id)

	def room_count(self) -> int:
		return len(self._rooms)

	async def join(
		self, lesson_id: str, participant: models.Participant
	) -> Tuple[RoomState, Optional[models.Participant]]:
		"""Attach a participant, creating the room on first join.

		Returns the room and, when the same user reconnects, the stale
		participant it replaced.
		"""
		while True:
			async with self._guard:
				room = self._rooms.get(lesson_id)
				if room is None:
					room = RoomState(lesson_id=lesson_id)
					self._rooms[lesson_id] = room
					self._locks[lesson_id] = asyncio.Lock()
					obs_metrics.set_rooms_active(len(self._rooms))
					logger.info("lesson room created lesson=%s", lesson_id)
				lock = self._locks[lesson_id]
			async with lock:
				if self._rooms.get(lesson_id) is not room:
					# Destroyed by a concurrent last leave; start over with a fresh room.
					continue
				holder = room.by_role(participant.role)
				replaced: Optional[models.Participant] = None
				if holder is not None:
					if holder.user_id != participant.user_id:
						raise LessonPolicyError("role_taken", status_code=409)
					replaced = room.participants.pop(holder.sid)
				room.participants[participant.sid] = participant
				return room, replaced

	async def leave(self, lesson_id: str, sid: str) -> bool:
		"""Detach a participant. Returns True when the room was destroyed."""
		room = self._rooms.get(lesson_id)
		if room is None:
			return False
		async with self._locks[lesson_id]:
			room.participants.pop(sid, None)
		return await self._discard_if_empty(lesson_id)

	async def _discard_if_empty(self, lesson_id: str) -> bool:
		async with self._guard:
			room = self._rooms.get(lesson_id)
			if room is None or room.participants:
				return False
			self._rooms.pop(lesson_id, None)
			self._locks.pop(lesson_id, None)
			obs_metrics.set_rooms_active(len(self._rooms))
		logger.info("lesson room destroyed lesson=%s log_entries=%d", lesson_id, len(room.log))
		return True

	@asynccontextmanager
	async def mutate(self, lesson_id: str) -> AsyncIterator[RoomState]:
		"""Serialize a read-modify-write on one room."""
		room = self._rooms.get(lesson_id)
		lock = self._locks.get(lesson_id)
		if room is None or lock is None:
			raise LessonPolicyError("room_not_found", status_code=404)
		async with lock:
			yield room

	async def clear(self) -> None:
		async with self._guard:
			self._rooms.clear()
			self._locks.clear()
			obs_metrics.set_rooms_active(0)


registry = RoomRegistry()
