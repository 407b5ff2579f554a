"""Policy helpers for live lesson rooms."""

from __future__ import annotations

from datetime import datetime, timezone

from classroom.domain.lessons import models
from classroom.infra.redis import redis_client
from classroom.settings import settings


class LessonPolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


class ZoneActionError(LessonPolicyError):
	"""A ZONE_ACTION that is malformed or names an unsupported action."""


async def _touch_limit(key: str, ttl_seconds: int) -> int:
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, ttl_seconds)
		count, _ = await pipe.execute()
	return int(count)


def _minute_bucket() -> str:
	return datetime.now(timezone.utc).strftime("%Y%m%d%H%M")


async def enforce_chat_limit(user_id: str) -> None:
	key = f"rl:lesson:chat:{user_id}:{_minute_bucket()}"
	if await _touch_limit(key, 120) > settings.chat_rate_per_minute:
		raise LessonPolicyError("rate_limited:chat", status_code=429)


async def enforce_zone_limit(user_id: str) -> None:
	key = f"rl:lesson:zone:{user_id}:{_minute_bucket()}"
	if await _touch_limit(key, 120) > settings.zone_rate_per_minute:
		raise LessonPolicyError("rate_limited:zone", status_code=429)


def ensure_teacher(participant: models.Participant) -> None:
	if not participant.is_teacher():
		raise LessonPolicyError("teacher_only", status_code=403)


def ensure_role_allowed(participant: models.Participant, allowed_roles: tuple[str, ...]) -> None:
	if participant.role not in allowed_roles:
		raise LessonPolicyError(f"{'_'.join(allowed_roles)}_only", status_code=403)


def ensure_slide_in_range(lesson: models.LessonSnapshot | None, slide_index: int) -> None:
	if lesson is None or not lesson.activities:
		return
	if slide_index >= len(lesson.activities):
		raise LessonPolicyError("slide_out_of_range")
