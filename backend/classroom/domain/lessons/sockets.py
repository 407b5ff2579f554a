"""Socket.IO namespace relaying live lesson state between teacher and student."""

from __future__ import annotations

import json
import logging
import secrets
import time
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qs

import socketio
from pydantic import ValidationError

from classroom.domain.lessons import models, policy, zones
from classroom.domain.lessons.schemas import (
	VIDEO_EVENTS,
	ChatMessagePayload,
	LessonUpdatePayload,
	VideoPayload,
)
from classroom.domain.lessons.store import RoomRegistry, registry as default_registry
from classroom.infra.auth import parse_token
from classroom.infra.redis import redis_client
from classroom.obs import logging as obs_logging
from classroom.obs import metrics as obs_metrics
from classroom.settings import settings

logger = logging.getLogger(__name__)

Session = Tuple[str, models.Participant]


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _query(environ: dict) -> Dict[str, str]:
	raw = environ.get("QUERY_STRING")
	if raw is None:
		scope = environ.get("asgi.scope") or {}
		raw = scope.get("query_string", b"")
	if isinstance(raw, bytes):
		raw = raw.decode()
	return {key: values[0] for key, values in parse_qs(raw or "").items() if values}


class LessonNamespace(socketio.AsyncNamespace):
	"""One room channel per lesson session; the server is the merge point."""

	def __init__(self, rooms: RoomRegistry | None = None) -> None:
		super().__init__("/lesson")
		self._rooms = rooms or default_registry
		self._sessions: Dict[str, Session] = {}

	@staticmethod
	def lesson_channel(lesson_id: str) -> str:
		return f"lesson:{lesson_id}"

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		try:
			ctx = await self._authorise(environ, auth)
		except policy.LessonPolicyError as exc:
			obs_metrics.socket_disconnected(self.namespace)
			raise socketio.exceptions.ConnectionRefusedError(exc.code) from None
		except Exception:
			obs_metrics.socket_disconnected(self.namespace)
			raise socketio.exceptions.ConnectionRefusedError("unauthorized") from None
		lesson_id = ctx.get("lesson_id")
		if not lesson_id:
			obs_metrics.socket_disconnected(self.namespace)
			raise socketio.exceptions.ConnectionRefusedError("missing_lesson")

		participant = models.Participant(
			sid=sid,
			user_id=str(ctx["user_id"]),
			role=str(ctx["role"]),
			display_name=ctx.get("name"),
		)
		try:
			_, replaced = await self._rooms.join(lesson_id, participant)
		except policy.LessonPolicyError as exc:
			obs_metrics.socket_disconnected(self.namespace)
			raise socketio.exceptions.ConnectionRefusedError(exc.code) from None
		self._sessions[sid] = (lesson_id, participant)
		try:
			await self.enter_room(sid, self.lesson_channel(lesson_id))
		except ValueError:
			logger.debug("lesson connect room attach failed sid=%s", sid, exc_info=True)

		tokens = obs_logging.bind_context(lesson_id=lesson_id, user_id=participant.user_id, role=participant.role)
		try:
			logger.info("lesson connect sid=%s replaced=%s", sid, replaced.sid if replaced else None)
		finally:
			obs_logging.reset_context(tokens)

		if replaced is not None:
			self._sessions.pop(replaced.sid, None)
			try:
				await self.disconnect(replaced.sid)
			except Exception:
				logger.debug("stale sid disconnect failed sid=%s", replaced.sid, exc_info=True)

		async with self._rooms.mutate(lesson_id) as current:
			history = current.history()
			zone = dict(current.zone)
			media = current.media.to_payload(time.time()) if current.media is not None else None
			roster = current.roster()

		await self.emit("history_dump", {"data": history}, room=sid)
		obs_metrics.history_dump_sent(len(history))
		if zone:
			await self.emit(models.ZONE_STATE_UPDATE, zone, room=sid)
		if media is not None:
			await self.emit("VIDEO_STATE", media, room=sid)
		await self.emit("presence_update", {"participants": roster}, room=self.lesson_channel(lesson_id))

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		session = self._sessions.pop(sid, None)
		if session is None:
			return
		lesson_id, participant = session
		try:
			await self.leave_room(sid, self.lesson_channel(lesson_id))
		except ValueError:
			logger.debug("lesson disconnect room detach failed sid=%s", sid, exc_info=True)
		destroyed = await self._rooms.leave(lesson_id, sid)
		logger.info(
			"lesson disconnect sid=%s lesson=%s role=%s reason=%s destroyed=%s",
			sid,
			lesson_id,
			participant.role,
			reason,
			destroyed,
		)
		if not destroyed:
			room = self._rooms.get(lesson_id)
			roster = room.roster() if room is not None else []
			await self.emit("presence_update", {"participants": roster}, room=self.lesson_channel(lesson_id))

	async def on_chat_message(self, sid: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, models.CHAT_MESSAGE)
		session = self._session(sid)
		if session is None:
			return
		lesson_id, participant = session
		try:
			message = ChatMessagePayload.model_validate(payload)
			await policy.enforce_chat_limit(participant.user_id)
			async with self._rooms.mutate(lesson_id) as room:
				wire = room.append_chat(message)
				await self.emit(models.CHAT_MESSAGE, wire, room=self.lesson_channel(lesson_id), skip_sid=sid)
		except (ValidationError, TypeError):
			await self._reject(sid, models.CHAT_MESSAGE, "invalid_payload")
		except policy.LessonPolicyError as exc:
			await self._reject(sid, models.CHAT_MESSAGE, exc.code)

	async def on_lesson_update(self, sid: str, payload: dict) -> None:
		await self._handle_lesson(sid, models.LESSON_UPDATE, payload)

	async def on_lesson_state(self, sid: str, payload: dict) -> None:
		await self._handle_lesson(sid, models.LESSON_STATE, payload)

	async def _handle_lesson(self, sid: str, event: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, event)
		session = self._session(sid)
		if session is None:
			return
		lesson_id, participant = session
		try:
			policy.ensure_teacher(participant)
			update = LessonUpdatePayload.model_validate(payload)
			async with self._rooms.mutate(lesson_id) as room:
				wire = room.apply_lesson(update)
				await self.emit(models.LESSON_UPDATE, wire, room=self.lesson_channel(lesson_id), skip_sid=sid)
		except (ValidationError, TypeError):
			await self._reject(sid, event, "invalid_payload")
		except policy.LessonPolicyError as exc:
			await self._reject(sid, event, exc.code)

	async def on_ZONE_ACTION(self, sid: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, "ZONE_ACTION")
		session = self._session(sid)
		if session is None:
			return
		lesson_id, participant = session
		try:
			update = zones.parse_zone_action(payload)
			policy.ensure_role_allowed(participant, update.allowed_roles)
			if update.activity_type != "drawing":
				# Drawing is throttled at the source; everything else is rate limited here.
				await policy.enforce_zone_limit(participant.user_id)
			async with self._rooms.mutate(lesson_id) as room:
				merged = room.apply_zone(update)
				# Everyone gets the merged state, the sender included.
				await self.emit(models.ZONE_STATE_UPDATE, merged, room=self.lesson_channel(lesson_id))
			obs_metrics.zone_merged(update.activity_type, update.action)
		except policy.LessonPolicyError as exc:
			await self._reject(sid, "ZONE_ACTION", exc.code)

	async def on_VIDEO_PLAY(self, sid: str, payload: dict) -> None:
		await self._handle_video(sid, "VIDEO_PLAY", payload)

	async def on_VIDEO_PAUSE(self, sid: str, payload: dict) -> None:
		await self._handle_video(sid, "VIDEO_PAUSE", payload)

	async def on_VIDEO_SEEK(self, sid: str, payload: dict) -> None:
		await self._handle_video(sid, "VIDEO_SEEK", payload)

	async def on_VIDEO_SYNC(self, sid: str, payload: dict) -> None:
		await self._handle_video(sid, "VIDEO_SYNC", payload)

	async def on_VIDEO_STATE(self, sid: str, payload: dict) -> None:
		await self._handle_video(sid, "VIDEO_STATE", payload)

	async def _handle_video(self, sid: str, event: str, payload: dict) -> None:
		obs_metrics.socket_event(self.namespace, event)
		session = self._session(sid)
		if session is None or event not in VIDEO_EVENTS:
			return
		lesson_id, participant = session
		try:
			policy.ensure_teacher(participant)
			frame = VideoPayload.model_validate(payload)
			async with self._rooms.mutate(lesson_id) as room:
				room.record_media(event, frame.t, frame.state)
				wire = frame.model_dump(exclude_none=True)
				await self.emit(event, wire, room=self.lesson_channel(lesson_id), skip_sid=sid)
		except (ValidationError, TypeError):
			await self._reject(sid, event, "invalid_payload")
		except policy.LessonPolicyError as exc:
			await self._reject(sid, event, exc.code)

	def _session(self, sid: str) -> Optional[Session]:
		session = self._sessions.get(sid)
		if session is None:
			logger.debug("frame from unknown sid=%s", sid)
		return session

	async def _reject(self, sid: str, event: str, code: str) -> None:
		obs_metrics.frame_rejected(code)
		logger.warning("lesson frame rejected sid=%s event=%s code=%s", sid, event, code)
		await self.emit("sys.warn", {"code": code, "event": event}, room=sid)

	async def _authorise(self, environ: dict, auth: Optional[dict]) -> Dict[str, Optional[str]]:
		scope = environ.get("asgi.scope", environ)
		auth_payload = dict(auth or environ.get("auth") or scope.get("auth") or {})
		query = _query(environ)
		lesson_id = auth_payload.get("lesson_id") or auth_payload.get("lessonId") or query.get("lesson_id")
		ctx: Optional[Dict[str, Optional[str]]] = None
		ticket = auth_payload.get("ticket") or query.get("ticket")
		if ticket:
			ctx = await consume_ticket(str(ticket))
		if ctx is None:
			token = auth_payload.get("token") or query.get("token")
			if not token:
				auth_header = _header(scope, "authorization")
				if auth_header and auth_header.lower().startswith("bearer "):
					token = auth_header.split(" ", 1)[1]
			if not token:
				raise ValueError("missing_token")
			ctx = parse_token(str(token))
		if not ctx or not ctx.get("user_id") or not ctx.get("role"):
			raise ValueError("missing_claims")
		bound = ctx.get("lesson_id")
		if bound and lesson_id and str(lesson_id) != bound:
			# A ticket only admits the lesson it was issued for.
			raise policy.LessonPolicyError("lesson_mismatch", status_code=403)
		resolved = dict(ctx)
		resolved["lesson_id"] = str(bound or lesson_id or "") or None
		return resolved


def _ticket_key(ticket: str) -> str:
	return f"lticket:{ticket}"


async def issue_ticket(user_id: str, role: str, lesson_id: str, *, name: Optional[str] = None) -> str:
	"""Mint a one-time socket ticket so browsers need not put a JWT in the URL."""
	ticket = secrets.token_urlsafe(24)
	body = {"user_id": user_id, "role": role, "name": name, "lesson_id": lesson_id}
	await redis_client.set(_ticket_key(ticket), json.dumps(body), ex=settings.socket_ticket_ttl_seconds)
	return ticket


async def consume_ticket(ticket: str) -> Optional[Dict[str, Optional[str]]]:
	key = _ticket_key(ticket)
	cached = await redis_client.get(key)
	if not cached:
		return None
	await redis_client.delete(key)
	try:
		parsed = json.loads(cached)
	except json.JSONDecodeError:
		return None
	user_id = parsed.get("user_id")
	role = parsed.get("role")
	if not user_id or role not in ("teacher", "student"):
		return None
	return {
		"user_id": str(user_id),
		"role": str(role),
		"name": parsed.get("name"),
		"lesson_id": str(parsed["lesson_id"]) if parsed.get("lesson_id") else None,
	}
