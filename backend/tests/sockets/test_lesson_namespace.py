from unittest.mock import AsyncMock

import pytest
import socketio

from classroom.domain.lessons import sockets
from classroom.domain.lessons.sockets import LessonNamespace
from classroom.domain.lessons.store import RoomRegistry
from classroom.infra import jwt as jwt_helper
from classroom.settings import settings

LESSON = {"id": 3, "title": "Shapes", "activities": [{"id": 1, "type": "drawing"}, {"id": 2, "type": "matching"}]}
ENVIRON = {"asgi.scope": {"headers": [], "query_string": b""}}


def _namespace():
	server = socketio.AsyncServer(async_mode="asgi")
	rooms = RoomRegistry()
	namespace = LessonNamespace(rooms)
	server.register_namespace(namespace)
	namespace.emit = AsyncMock()
	namespace.enter_room = AsyncMock()
	namespace.leave_room = AsyncMock()
	namespace.disconnect = AsyncMock()
	return namespace, rooms


async def _connect(namespace, sid, user_id, role, lesson_id="L1"):
	auth = {"token": f"uid:{user_id};role:{role};name:{user_id.upper()}", "lesson_id": lesson_id}
	await namespace.trigger_event("connect", sid, ENVIRON, auth)


def _emits(namespace, event):
	return [call for call in namespace.emit.await_args_list if call.args[0] == event]


@pytest.mark.asyncio
async def test_connect_requires_token():
	namespace, _ = _namespace()

	with pytest.raises(socketio.exceptions.ConnectionRefusedError):
		await namespace.trigger_event("connect", "sid-1", ENVIRON, {"lesson_id": "L1"})


@pytest.mark.asyncio
async def test_connect_requires_lesson():
	namespace, _ = _namespace()

	with pytest.raises(socketio.exceptions.ConnectionRefusedError) as exc:
		await namespace.trigger_event("connect", "sid-1", ENVIRON, {"token": "uid:t1;role:teacher"})
	assert exc.value.error_args["message"] == "missing_lesson"


@pytest.mark.asyncio
async def test_synthetic_token_rejected_outside_dev():
	namespace, _ = _namespace()
	settings.environment = "production"

	with pytest.raises(socketio.exceptions.ConnectionRefusedError):
		await _connect(namespace, "sid-1", "t1", "teacher")


@pytest.mark.asyncio
async def test_connect_with_jwt_in_query_string():
	namespace, rooms = _namespace()
	token = jwt_helper.encode_access({"sub": "t1", "role": "teacher", "name": "Ms T"})
	environ = {"asgi.scope": {"headers": [], "query_string": f"token={token}&lesson_id=L9".encode()}}

	await namespace.trigger_event("connect", "sid-1", environ, None)

	room = rooms.get("L9")
	assert room is not None
	assert room.participant("sid-1").display_name == "Ms T"


@pytest.mark.asyncio
async def test_connect_with_one_time_ticket():
	namespace, rooms = _namespace()
	ticket = await sockets.issue_ticket("u1", "student", "L2", name="Sam")

	await namespace.trigger_event("connect", "sid-1", ENVIRON, {"ticket": ticket})

	assert rooms.get("L2").participant("sid-1").user_id == "u1"
	assert await sockets.consume_ticket(ticket) is None


@pytest.mark.asyncio
async def test_ticket_for_another_lesson_refused():
	namespace, rooms = _namespace()
	ticket = await sockets.issue_ticket("u1", "student", "L2", name="Sam")

	with pytest.raises(socketio.exceptions.ConnectionRefusedError) as exc:
		await namespace.trigger_event("connect", "sid-1", ENVIRON, {"ticket": ticket, "lesson_id": "L7"})

	assert exc.value.error_args["message"] == "lesson_mismatch"
	assert rooms.get("L7") is None
	assert rooms.get("L2") is None


@pytest.mark.asyncio
async def test_ticket_lesson_used_when_client_repeats_it():
	namespace, rooms = _namespace()
	ticket = await sockets.issue_ticket("u1", "student", "L2")

	await namespace.trigger_event("connect", "sid-1", ENVIRON, {"ticket": ticket, "lesson_id": "L2"})

	assert rooms.get("L2").participant("sid-1").user_id == "u1"


@pytest.mark.asyncio
async def test_connect_sends_history_dump_then_presence():
	namespace, _ = _namespace()

	await _connect(namespace, "sid-t", "t1", "teacher")

	events = [call.args[0] for call in namespace.emit.await_args_list]
	assert events == ["history_dump", "presence_update"]
	dump = _emits(namespace, "history_dump")[0]
	assert dump.args[1] == {"data": []}
	assert dump.kwargs["room"] == "sid-t"
	namespace.enter_room.assert_awaited_once_with("sid-t", "lesson:L1")


@pytest.mark.asyncio
async def test_second_user_for_taken_role_refused():
	namespace, _ = _namespace()
	await _connect(namespace, "sid-1", "t1", "teacher")

	with pytest.raises(socketio.exceptions.ConnectionRefusedError) as exc:
		await _connect(namespace, "sid-2", "t2", "teacher")
	assert exc.value.error_args["message"] == "role_taken"


@pytest.mark.asyncio
async def test_reconnect_replaces_stale_sid():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-old", "t1", "teacher")

	await _connect(namespace, "sid-new", "t1", "teacher")

	namespace.disconnect.assert_awaited_once_with("sid-old")
	assert list(rooms.get("L1").participants) == ["sid-new"]


@pytest.mark.asyncio
async def test_chat_is_logged_and_broadcast_to_others():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-s", "s1", "student")
	namespace.emit.reset_mock()

	await namespace.trigger_event("chat_message", "sid-s", {"name": "S1", "text": "hello", "time": "10:01"})

	call = _emits(namespace, "chat_message")[0]
	assert call.args[1] == {"name": "S1", "text": "hello", "time": "10:01"}
	assert call.kwargs == {"room": "lesson:L1", "skip_sid": "sid-s"}
	assert rooms.get("L1").history()[-1]["type"] == "chat_message"


@pytest.mark.asyncio
async def test_invalid_chat_warns_sender_only():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-s", "s1", "student")
	namespace.emit.reset_mock()

	await namespace.trigger_event("chat_message", "sid-s", {"name": "S1"})

	warn = _emits(namespace, "sys.warn")[0]
	assert warn.args[1] == {"code": "invalid_payload", "event": "chat_message"}
	assert warn.kwargs == {"room": "sid-s"}
	assert rooms.get("L1").log == []


@pytest.mark.asyncio
async def test_student_cannot_navigate_lesson():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-s", "s1", "student")
	namespace.emit.reset_mock()

	await namespace.trigger_event("lesson_update", "sid-s", {"lesson": LESSON, "slideIndex": 0})

	assert _emits(namespace, "sys.warn")[0].args[1]["code"] == "teacher_only"
	assert rooms.get("L1").lesson is None


@pytest.mark.asyncio
async def test_lesson_state_alias_rebroadcast_as_lesson_update():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-t", "t1", "teacher")
	namespace.emit.reset_mock()

	await namespace.trigger_event("lesson_state", "sid-t", {"lesson": LESSON, "slideIndex": 1})

	call = _emits(namespace, "lesson_update")[0]
	assert call.args[1] == {"lesson": LESSON, "slideIndex": 1}
	assert call.kwargs["skip_sid"] == "sid-t"
	assert rooms.get("L1").slide_index == 1


@pytest.mark.asyncio
async def test_zone_action_merged_and_sent_to_everyone():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-t", "t1", "teacher")
	await _connect(namespace, "sid-s", "s1", "student")
	namespace.emit.reset_mock()

	await namespace.trigger_event("ZONE_ACTION", "sid-s", {"activity_type": "matching", "action": "MATCH_UPDATE", "matches": {"a": "1"}})
	await namespace.trigger_event("ZONE_ACTION", "sid-t", {"activity_type": "matching", "action": "MATCH_UPDATE", "resultsRevealed": True})

	updates = _emits(namespace, "ZONE_STATE_UPDATE")
	assert len(updates) == 2
	assert updates[-1].args[1] == {
		"activity_type": "matching",
		"action": "MATCH_UPDATE",
		"matches": {"a": "1"},
		"resultsRevealed": True,
	}
	assert updates[-1].kwargs == {"room": "lesson:L1"}
	assert rooms.get("L1").zone["resultsRevealed"] is True


@pytest.mark.asyncio
async def test_student_reveal_rejected_without_state_change():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-s", "s1", "student")
	namespace.emit.reset_mock()

	await namespace.trigger_event("ZONE_ACTION", "sid-s", {"activity_type": "matching", "action": "MATCH_UPDATE", "resultsRevealed": True})

	assert _emits(namespace, "ZONE_STATE_UPDATE") == []
	assert _emits(namespace, "sys.warn")[0].args[1]["code"] == "teacher_only"
	assert rooms.get("L1").zone == {}


@pytest.mark.asyncio
async def test_quiz_actions_are_not_synchronized():
	namespace, _ = _namespace()
	await _connect(namespace, "sid-s", "s1", "student")
	namespace.emit.reset_mock()

	await namespace.trigger_event("ZONE_ACTION", "sid-s", {"activity_type": "quiz", "action": "SELECT", "selected": 2})

	assert _emits(namespace, "sys.warn")[0].args[1]["code"] == "quiz_not_synchronized"


@pytest.mark.asyncio
async def test_late_joiner_gets_current_zone_and_media():
	namespace, _ = _namespace()
	await _connect(namespace, "sid-t", "t1", "teacher")
	await namespace.trigger_event("ZONE_ACTION", "sid-t", {"activity_type": "pdf", "action": "page_change", "page": 4})
	await namespace.trigger_event("VIDEO_PAUSE", "sid-t", {"t": 33.5})
	namespace.emit.reset_mock()

	await _connect(namespace, "sid-s", "s1", "student")

	events = [call.args[0] for call in namespace.emit.await_args_list]
	assert events == ["history_dump", "ZONE_STATE_UPDATE", "VIDEO_STATE", "presence_update"]
	assert _emits(namespace, "ZONE_STATE_UPDATE")[0].args[1]["page"] == 4
	assert _emits(namespace, "VIDEO_STATE")[0].args[1] == {"state": "paused", "t": 33.5}


@pytest.mark.asyncio
async def test_student_video_events_rejected():
	namespace, _ = _namespace()
	await _connect(namespace, "sid-s", "s1", "student")
	namespace.emit.reset_mock()

	await namespace.trigger_event("VIDEO_SEEK", "sid-s", {"t": 3})

	assert _emits(namespace, "VIDEO_SEEK") == []
	assert _emits(namespace, "sys.warn")[0].args[1]["code"] == "teacher_only"


@pytest.mark.asyncio
async def test_teacher_video_relayed_to_student():
	namespace, _ = _namespace()
	await _connect(namespace, "sid-t", "t1", "teacher")
	namespace.emit.reset_mock()

	await namespace.trigger_event("VIDEO_SYNC", "sid-t", {"t": 12.25})

	call = _emits(namespace, "VIDEO_SYNC")[0]
	assert call.args[1] == {"t": 12.25}
	assert call.kwargs == {"room": "lesson:L1", "skip_sid": "sid-t"}


@pytest.mark.asyncio
async def test_room_destroyed_when_last_participant_leaves():
	namespace, rooms = _namespace()
	await _connect(namespace, "sid-t", "t1", "teacher")
	await _connect(namespace, "sid-s", "s1", "student")
	await namespace.trigger_event("chat_message", "sid-s", {"name": "S", "text": "bye"})

	await namespace.trigger_event("disconnect", "sid-s", "client disconnect")
	assert rooms.get("L1") is not None
	presence = _emits(namespace, "presence_update")[-1]
	assert presence.args[1] == {"participants": [{"user_id": "t1", "role": "teacher", "name": "T1"}]}

	await namespace.trigger_event("disconnect", "sid-t", "client disconnect")
	assert rooms.get("L1") is None
	assert rooms.room_count() == 0
