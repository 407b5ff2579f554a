import pytest

from classroom.domain.lessons import models, policy
from classroom.settings import settings


@pytest.mark.asyncio
async def test_chat_rate_limit(monkeypatch, fake_redis):
	monkeypatch.setattr(settings, "chat_rate_per_minute", 2)

	await policy.enforce_chat_limit("u1")
	await policy.enforce_chat_limit("u1")
	with pytest.raises(policy.LessonPolicyError) as exc:
		await policy.enforce_chat_limit("u1")

	assert exc.value.code == "rate_limited:chat"
	assert exc.value.status_code == 429
	# Other users have their own window.
	await policy.enforce_chat_limit("u2")


@pytest.mark.asyncio
async def test_zone_rate_limit_key_expires(monkeypatch, fake_redis):
	monkeypatch.setattr(settings, "zone_rate_per_minute", 1)

	await policy.enforce_zone_limit("u1")
	with pytest.raises(policy.LessonPolicyError):
		await policy.enforce_zone_limit("u1")

	keys = [key async for key in fake_redis.scan_iter("rl:lesson:zone:u1:*")]
	assert len(keys) == 1
	assert 0 < await fake_redis.ttl(keys[0]) <= 120


def test_role_checks():
	student = models.Participant(sid="s", user_id="u", role="student")
	teacher = models.Participant(sid="t", user_id="v", role="teacher")

	policy.ensure_teacher(teacher)
	with pytest.raises(policy.LessonPolicyError) as exc:
		policy.ensure_teacher(student)
	assert exc.value.code == "teacher_only"

	with pytest.raises(policy.LessonPolicyError) as exc:
		policy.ensure_role_allowed(teacher, ("student",))
	assert exc.value.code == "student_only"
	assert exc.value.status_code == 403
