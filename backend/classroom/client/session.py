"""One participant's classroom session: the event loop over a lesson channel.

Every inbound frame goes through `ClassroomSession.handle`, a closed dispatch
from message type to handler. Activity controllers, media sync and the
resilience snapshot hang off the session and never talk to the channel
directly.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from classroom.client.activities import DocumentPager, GapFillSheet, MatchingBoard, QuizCard
from classroom.client.channel import LessonChannel
from classroom.client.content import LessonContentClient, LessonContentError
from classroom.client.draw import DrawSession
from classroom.client.echo import EchoGuard, LiveGate
from classroom.client.media import MediaSync
from classroom.client.replay import LessonView, recover_lesson
from classroom.client.snapshot import ResilienceSnapshot
from classroom.domain.lessons import models
from classroom.domain.lessons.policy import LessonPolicyError
from classroom.domain.lessons.schemas import VIDEO_EVENTS

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class ClassroomSession:
	def __init__(
		self,
		role: str,
		session_id: str,
		*,
		name: str = "",
		canvas_width: float = 1280.0,
		canvas_height: float = 720.0,
		content: Optional[LessonContentClient] = None,
		snapshot: Optional[ResilienceSnapshot] = None,
		media: Optional[MediaSync] = None,
	) -> None:
		self.role = role
		self.session_id = session_id
		self.name = name
		self.channel: Optional[LessonChannel] = None
		self.view = LessonView()
		self.echo = EchoGuard()
		self.gate = LiveGate()
		self.content = content
		self.snapshot = snapshot
		self.participants: List[Dict[str, Any]] = []
		self.warnings: List[Dict[str, Any]] = []
		self.history_received = False
		self.draw = DrawSession(
			partial(self._zone_action, "drawing"),
			width=canvas_width,
			height=canvas_height,
			echo=self.echo,
			gate=self.gate,
		)
		self.matching = MatchingBoard(role, partial(self._zone_action, "matching"), echo=self.echo, gate=self.gate)
		self.gap_fill = GapFillSheet(role, partial(self._zone_action, "gap_fill"), echo=self.echo)
		self.document = DocumentPager(role, partial(self._zone_action, "paginated_document"), echo=self.echo)
		self.quiz = QuizCard(role)
		self.media = media or MediaSync(role, self.send)
		self._zones: Dict[str, Callable[[Mapping[str, Any]], bool]] = {
			"drawing": self.draw.apply_remote,
			"matching": self.matching.apply_remote,
			"gap_fill": self.gap_fill.apply_remote,
			"paginated_document": self.document.apply_remote,
		}
		self._handlers: Dict[str, Handler] = {
			"history_dump": self._on_history_dump,
			models.CHAT_MESSAGE: self._on_chat,
			models.LESSON_UPDATE: self._on_lesson,
			models.LESSON_STATE: self._on_lesson,
			models.ZONE_STATE_UPDATE: self._on_zone,
			"presence_update": self._on_presence,
			"sys.warn": self._on_warning,
		}
		for event in VIDEO_EVENTS:
			self._handlers[event] = partial(self._on_video, event)

	@property
	def is_teacher(self) -> bool:
		return self.role == "teacher"

	async def open(self, url: str, auth_token: str, *, client: Any = None) -> LessonChannel:
		"""Connect, then announce the lesson if the teacher already holds one."""
		self.channel = await LessonChannel.connect(
			url,
			self.session_id,
			auth_token,
			handlers=[self.handle],
			client=client,
		)
		await self.announce_lesson()
		return self.channel

	async def close(self) -> None:
		await self.media.detach()
		if self.snapshot is not None:
			self.snapshot.flush()
		if self.channel is not None:
			await self.channel.close()

	async def send(self, message_type: str, payload: Any) -> None:
		if self.channel is None:
			raise RuntimeError("session is not open")
		await self.channel.send(message_type, payload)

	async def handle(self, message_type: str, payload: Any) -> None:
		handler = self._handlers.get(message_type)
		if handler is None:
			logger.debug("unhandled lesson frame type=%s", message_type)
			return
		await handler(payload)

	# Outbound

	async def resume(self) -> bool:
		"""Restore the lesson from the local snapshot by re-fetching its body."""
		if self.snapshot is None or self.content is None or self.view.lesson is not None:
			return False
		restored = self.snapshot.restore()
		if restored is None:
			return False
		try:
			lesson = await self.content.fetch_lesson(restored.lesson_id)
		except LessonContentError as exc:
			# The history dump will replay the lesson once connected.
			logger.warning("snapshot resume failed lesson=%s code=%s", restored.lesson_id, exc.code)
			return False
		self.view.lesson = lesson
		self.view.slide_index = restored.slide_index
		self._load_activity()
		return True

	async def announce_lesson(self) -> None:
		if self.is_teacher and self.view.lesson is not None:
			await self.send(models.LESSON_UPDATE, {"lesson": self.view.lesson, "slideIndex": self.view.slide_index})

	async def navigate(self, slide_index: int, lesson: Optional[Mapping[str, Any]] = None) -> None:
		if not self.is_teacher:
			raise LessonPolicyError("teacher_only", status_code=403)
		payload: Dict[str, Any] = {"lesson": dict(lesson) if lesson is not None else self.view.lesson, "slideIndex": slide_index}
		self._apply_lesson(payload)
		await self.send(models.LESSON_UPDATE, payload)

	async def send_chat(self, text: str, *, time: Optional[str] = None) -> Dict[str, Any]:
		message = {"name": self.name, "text": text, "time": time}
		# The server does not echo chat back to its sender. The next history_dump
		# replaces the transcript with the server's arrival order.
		self.view.append_chat(message)
		await self.send(models.CHAT_MESSAGE, message)
		return message

	# Inbound

	async def _on_history_dump(self, payload: Any) -> None:
		entries = payload.get("data") if isinstance(payload, Mapping) else None
		before = (self.view.lesson_id, self.view.slide_index)
		self.view.apply_history(entries or [])
		self.history_received = True
		if self.content is not None:
			await recover_lesson(self.view, self.content)
		if (self.view.lesson_id, self.view.slide_index) != before:
			self._reset_zone()
		self._schedule_snapshot()

	async def _on_chat(self, payload: Any) -> None:
		if isinstance(payload, Mapping):
			self.view.append_chat(payload)

	async def _on_lesson(self, payload: Any) -> None:
		if isinstance(payload, Mapping):
			self._apply_lesson(payload)

	async def _on_zone(self, payload: Any) -> None:
		if not isinstance(payload, Mapping):
			return
		self.view.zone = dict(payload)
		activity_type = models.canonical_activity_type(payload.get("activity_type"))
		apply = self._zones.get(activity_type or "")
		if apply is None:
			logger.debug("zone update for unknown activity type=%s", payload.get("activity_type"))
			return
		apply(payload)

	async def _on_video(self, event: str, payload: Any) -> None:
		if isinstance(payload, Mapping):
			self.media.apply(event, payload)

	async def _on_presence(self, payload: Any) -> None:
		participants = payload.get("participants") if isinstance(payload, Mapping) else None
		self.participants = [dict(p) for p in participants or [] if isinstance(p, Mapping)]

	async def _on_warning(self, payload: Any) -> None:
		warning = dict(payload) if isinstance(payload, Mapping) else {"code": str(payload)}
		self.warnings.append(warning)
		logger.warning("lesson frame rejected by server code=%s event=%s", warning.get("code"), warning.get("event"))

	# Internals

	async def _zone_action(self, activity_type: str, action: str, payload: Dict[str, Any]) -> None:
		frame = {"activity_type": activity_type, "action": action}
		frame.update(payload)
		await self.send("ZONE_ACTION", frame)

	def _apply_lesson(self, payload: Mapping[str, Any]) -> None:
		if self.view.apply_lesson(payload):
			self._reset_zone()
		self._schedule_snapshot()

	def _reset_zone(self) -> None:
		self.view.zone = None
		self.draw.reset()
		self.matching.reset_local()
		self.gap_fill.reset_local()
		self.document.reset_local()
		self._load_activity()

	def _load_activity(self) -> None:
		activity = self.view.activity()
		if activity is None:
			return
		kind = models.canonical_activity_type(activity.get("type") or activity.get("activity_type"))
		content = activity.get("content")
		if kind == "matching":
			self.matching.load(content)
		elif kind == "gap_fill":
			self.gap_fill.load(content)
		elif kind == "quiz":
			self.quiz.load(content)
		elif kind == "paginated_document" and isinstance(content, Mapping):
			pages = content.get("num_pages") or content.get("pages")
			self.document.num_pages = pages if isinstance(pages, int) and not isinstance(pages, bool) else None

	def _schedule_snapshot(self) -> None:
		if self.snapshot is not None:
			self.snapshot.schedule(self.view.lesson, self.view.slide_index)
