from unittest.mock import AsyncMock

import pytest
import socketio

from classroom.client.channel import NAMESPACE, ChannelClosedError, ChannelState, LessonChannel


class FakeSocketClient:
	def __init__(self) -> None:
		self.handlers: dict[str, object] = {}
		self.connect = AsyncMock()
		self.emit = AsyncMock()
		self.disconnect = AsyncMock()

	def on(self, event, handler=None, namespace=None):
		assert namespace == NAMESPACE
		self.handlers[event] = handler


@pytest.mark.asyncio
async def test_connect_sends_token_and_lesson_in_auth():
	client = FakeSocketClient()

	channel = await LessonChannel.connect("http://server", "L1", "tok", client=client)

	assert channel.state is ChannelState.OPEN
	kwargs = client.connect.await_args.kwargs
	assert kwargs["auth"] == {"token": "tok", "lesson_id": "L1"}
	assert kwargs["namespaces"] == [NAMESPACE]


@pytest.mark.asyncio
async def test_handlers_registered_before_open_see_every_frame():
	client = FakeSocketClient()
	received = []

	async def on_frame(event, data):
		received.append((event, data))

	channel = await LessonChannel.connect("http://server", "L1", "tok", handlers=[on_frame], client=client)
	channel.on_message(lambda event, data: received.append(("sync", event)))
	await client.handlers["*"]("history_dump", {"data": []})

	assert received == [("history_dump", {"data": []}), ("sync", "history_dump")]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
	client = FakeSocketClient()
	received = []

	def broken(event, data):
		raise RuntimeError("boom")

	channel = await LessonChannel.connect("http://server", "L1", "tok", handlers=[broken], client=client)
	channel.on_message(lambda event, data: received.append(event))
	await client.handlers["*"]("chat_message", {})

	assert received == ["chat_message"]


@pytest.mark.asyncio
async def test_refused_connection_is_terminal():
	client = FakeSocketClient()
	client.connect.side_effect = socketio.exceptions.ConnectionError("role_taken")

	channel = LessonChannel("http://server", client=client)
	with pytest.raises(ChannelClosedError):
		await channel.open("L1", "tok")

	assert channel.state is ChannelState.FAILED
	with pytest.raises(ChannelClosedError):
		await channel.send("chat_message", {})
	with pytest.raises(ChannelClosedError):
		await channel.open("L1", "tok")


@pytest.mark.asyncio
async def test_server_disconnect_closes_channel():
	client = FakeSocketClient()
	channel = await LessonChannel.connect("http://server", "L1", "tok", client=client)

	await client.handlers["disconnect"]("server disconnect")

	assert channel.state is ChannelState.CLOSED
	assert await channel.wait_closed() is ChannelState.CLOSED
	with pytest.raises(ChannelClosedError):
		await channel.send("chat_message", {"name": "x", "text": "y"})
	client.emit.assert_not_awaited()


@pytest.mark.asyncio
async def test_emit_failure_marks_channel_failed():
	client = FakeSocketClient()
	client.emit.side_effect = socketio.exceptions.BadNamespaceError("/lesson is not a connected namespace.")
	channel = await LessonChannel.connect("http://server", "L1", "tok", client=client)

	with pytest.raises(ChannelClosedError):
		await channel.send("ZONE_ACTION", {})

	assert channel.state is ChannelState.FAILED


@pytest.mark.asyncio
async def test_close_disconnects_once():
	client = FakeSocketClient()
	channel = await LessonChannel.connect("http://server", "L1", "tok", client=client)

	await channel.close()
	await channel.close()

	assert channel.state is ChannelState.CLOSED
	client.disconnect.assert_awaited_once()
