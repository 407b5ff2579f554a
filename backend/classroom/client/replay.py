"""Rebuilding a participant's view from the room's session log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from classroom.client.content import LessonContentClient, LessonContentError
from classroom.domain.lessons.models import CHAT_MESSAGE, LESSON_NAVIGATION_TYPES

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReplayResult:
	chat: List[Dict[str, Any]] = field(default_factory=list)
	lesson: Optional[Dict[str, Any]] = None
	slide_index: Optional[int] = None
	lesson_id: Any = None


def _entries(raw: Any) -> List[Mapping[str, Any]]:
	if not isinstance(raw, list):
		return []
	return [entry for entry in raw if isinstance(entry, Mapping)]


def replay_history(entries: Iterable[Mapping[str, Any]]) -> ReplayResult:
	"""Chat transcript in arrival order plus the last lesson navigation entry."""
	log = _entries(list(entries))
	result = ReplayResult()
	result.chat = [
		dict(entry["payload"])
		for entry in log
		if entry.get("type") == CHAT_MESSAGE and isinstance(entry.get("payload"), Mapping)
	]
	# Only the newest navigation entry is valid, so scan from the end.
	for entry in reversed(log):
		if entry.get("type") not in LESSON_NAVIGATION_TYPES:
			continue
		payload = entry.get("payload")
		if not isinstance(payload, Mapping):
			continue
		lesson = payload.get("lesson")
		if isinstance(lesson, Mapping):
			result.lesson = dict(lesson)
			result.lesson_id = lesson.get("id")
		slide_index = payload.get("slideIndex")
		result.slide_index = slide_index if isinstance(slide_index, int) and not isinstance(slide_index, bool) else 0
		break
	return result


@dataclass(slots=True)
class LessonView:
	"""The observable state of a classroom: lesson, slide, chat and zone."""

	lesson: Optional[Dict[str, Any]] = None
	slide_index: int = 0
	chat: List[Dict[str, Any]] = field(default_factory=list)
	zone: Optional[Dict[str, Any]] = None

	@property
	def lesson_id(self) -> Any:
		return self.lesson.get("id") if self.lesson else None

	def activity(self) -> Optional[Dict[str, Any]]:
		activities = (self.lesson or {}).get("activities") or []
		if 0 <= self.slide_index < len(activities) and isinstance(activities[self.slide_index], dict):
			return activities[self.slide_index]
		return None

	def append_chat(self, payload: Mapping[str, Any]) -> None:
		self.chat.append(dict(payload))

	def apply_lesson(self, payload: Mapping[str, Any]) -> bool:
		"""Apply a lesson_update. Returns True when the zone was reset.

		Repeating the current lesson and slide keeps the zone, as the room does.
		"""
		previous = (self.lesson_id, self.slide_index)
		lesson = payload.get("lesson")
		if isinstance(lesson, Mapping):
			self.lesson = dict(lesson)
		slide_index = payload.get("slideIndex")
		if isinstance(slide_index, int) and not isinstance(slide_index, bool):
			self.slide_index = slide_index
		if (self.lesson_id, self.slide_index) == previous:
			return False
		self.zone = None
		return True

	def apply_history(self, entries: Any) -> ReplayResult:
		result = replay_history(_entries(entries))
		self.chat = list(result.chat)
		if result.lesson is not None:
			self.lesson = result.lesson
		if result.slide_index is not None:
			self.slide_index = result.slide_index
		return result

	def observable(self) -> Dict[str, Any]:
		return {"lesson": self.lesson, "slide_index": self.slide_index, "chat": list(self.chat)}


def needs_recovery(view: LessonView) -> bool:
	if view.lesson is None:
		return False
	activities = view.lesson.get("activities")
	if not isinstance(activities, list):
		return True
	return not 0 <= view.slide_index < max(len(activities), 1)


async def recover_lesson(view: LessonView, content: LessonContentClient) -> bool:
	"""Re-fetch the lesson body when the replayed one cannot be restored.

	Failures are not fatal: the view keeps waiting for the next live update.
	"""
	lesson_id = view.lesson_id
	if lesson_id is None or not needs_recovery(view):
		return False
	try:
		lesson = await content.fetch_lesson(lesson_id)
	except LessonContentError as exc:
		logger.warning("lesson recovery failed lesson=%s code=%s", lesson_id, exc.code)
		return False
	view.lesson = lesson
	activities = lesson.get("activities") or []
	if not 0 <= view.slide_index < max(len(activities), 1):
		view.slide_index = 0
	return True
