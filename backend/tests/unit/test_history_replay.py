import httpx
import pytest

from classroom.client.content import LessonContentClient, LessonContentError
from classroom.client.replay import LessonView, needs_recovery, recover_lesson, replay_history
from classroom.domain.lessons import zones
from classroom.domain.lessons.schemas import ChatMessagePayload, LessonUpdatePayload
from classroom.domain.lessons.store import RoomState

LESSON_A = {"id": 1, "title": "A", "activities": [{"id": 10, "type": "drawing"}, {"id": 11, "type": "matching"}]}
LESSON_B = {"id": 2, "title": "B", "activities": [{"id": 20, "type": "gap_fill"}]}


def test_replay_filters_chat_in_order_and_takes_last_navigation():
	entries = [
		{"type": "lesson_update", "payload": {"lesson": LESSON_A, "slideIndex": 1}},
		{"type": "chat_message", "payload": {"name": "T", "text": "one", "time": None}},
		{"type": "ZONE_ACTION", "payload": {"activity_type": "drawing", "action": "clear_board"}},
		{"type": "lesson_state", "payload": {"lesson": LESSON_B, "slideIndex": 0}},
		{"type": "chat_message", "payload": {"name": "S", "text": "two", "time": None}},
	]

	result = replay_history(entries)

	assert [message["text"] for message in result.chat] == ["one", "two"]
	assert result.lesson == LESSON_B
	assert result.slide_index == 0
	assert result.lesson_id == 2


def test_replay_of_empty_log():
	result = replay_history([])

	assert result.chat == []
	assert result.lesson is None
	assert result.slide_index is None


def test_reconnecting_client_matches_one_that_stayed():
	room = RoomState(lesson_id="L1")
	stayed = LessonView()
	events = [
		("lesson", {"lesson": LESSON_A, "slideIndex": 0}),
		("chat", {"name": "T", "text": "hello"}),
		("zone", zones.DrawEvent(shapes=[])),
		("lesson", {"slideIndex": 1}),
		("chat", {"name": "T", "text": "now match"}),
		("lesson", {"lesson": LESSON_B, "slideIndex": 0}),
		("chat", {"name": "T", "text": "last"}),
	]
	for kind, payload in events:
		if kind == "lesson":
			wire = room.apply_lesson(LessonUpdatePayload.model_validate(payload))
			stayed.apply_lesson(wire)
		elif kind == "chat":
			stayed.append_chat(room.append_chat(ChatMessagePayload.model_validate(payload)))
		else:
			room.apply_zone(payload)

	rejoined = LessonView()
	rejoined.apply_history(room.history())

	assert rejoined.observable() == stayed.observable()


def _content(handler) -> LessonContentClient:
	return LessonContentClient("http://lessons.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_content_client_fetches_lesson():
	seen = []

	def handler(request: httpx.Request) -> httpx.Response:
		seen.append(request.url.path)
		return httpx.Response(200, json=LESSON_A)

	async with _content(handler) as client:
		lesson = await client.fetch_lesson(1)

	assert lesson == LESSON_A
	assert seen == ["/api/curriculum/lessons/1/"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"response, code",
	[
		(httpx.Response(404, json={"detail": "gone"}), "lesson_not_found"),
		(httpx.Response(500), "lesson_fetch_failed"),
		(httpx.Response(200, content=b"<html>"), "lesson_invalid_body"),
		(httpx.Response(200, json=[1, 2]), "lesson_invalid_body"),
	],
)
async def test_content_client_errors(response, code):
	async with _content(lambda request: response) as client:
		with pytest.raises(LessonContentError) as exc:
			await client.fetch_lesson(9)
	assert exc.value.code == code


@pytest.mark.asyncio
async def test_content_client_network_error():
	def handler(request: httpx.Request) -> httpx.Response:
		raise httpx.ConnectError("refused", request=request)

	async with _content(handler) as client:
		with pytest.raises(LessonContentError) as exc:
			await client.fetch_lesson(1)
	assert exc.value.code == "lesson_fetch_failed"


@pytest.mark.asyncio
async def test_recover_refetches_when_slide_does_not_resolve():
	view = LessonView(lesson={"id": 1, "title": "A", "activities": []}, slide_index=1)
	assert needs_recovery(view)

	async with _content(lambda request: httpx.Response(200, json=LESSON_A)) as client:
		recovered = await recover_lesson(view, client)

	assert recovered is True
	assert view.lesson == LESSON_A
	assert view.slide_index == 1


@pytest.mark.asyncio
async def test_recover_failure_keeps_waiting():
	view = LessonView(lesson={"id": 1, "title": "A"}, slide_index=3)

	async with _content(lambda request: httpx.Response(503)) as client:
		recovered = await recover_lesson(view, client)

	assert recovered is False
	assert view.lesson == {"id": 1, "title": "A"}


@pytest.mark.asyncio
async def test_recover_skipped_for_resolvable_lesson():
	view = LessonView(lesson=dict(LESSON_A), slide_index=1)

	def handler(request: httpx.Request) -> httpx.Response:
		raise AssertionError("no fetch expected")

	async with _content(handler) as client:
		assert await recover_lesson(view, client) is False
