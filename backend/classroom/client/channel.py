"""Transport channel wrapping a python-socketio client on the /lesson namespace.

The channel is ordered and best-effort. It never reconnects on its own: a
dropped connection leaves it in a terminal state and callers open a fresh
channel if they want to continue.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

import socketio

logger = logging.getLogger(__name__)

NAMESPACE = "/lesson"

MessageHandler = Callable[[str, Any], Union[Awaitable[None], None]]


class ChannelState(str, Enum):
	IDLE = "idle"
	OPEN = "open"
	CLOSED = "closed"
	FAILED = "failed"


TERMINAL_STATES = (ChannelState.CLOSED, ChannelState.FAILED)


class ChannelClosedError(RuntimeError):
	"""Raised when using a channel that is closed, failed or never opened."""

	def __init__(self, state: ChannelState, reason: Optional[str] = None) -> None:
		super().__init__(f"channel_{state.value}" + (f": {reason}" if reason else ""))
		self.state = state
		self.reason = reason


class LessonChannel:
	"""One duplex connection per participant, authenticated at open time."""

	def __init__(self, url: str, *, client: Optional[socketio.AsyncClient] = None) -> None:
		self._url = url
		self._client = client or socketio.AsyncClient(reconnection=False)
		self._handlers: List[MessageHandler] = []
		self._state = ChannelState.IDLE
		self._closed = asyncio.Event()
		self.close_reason: Optional[str] = None
		self._client.on("*", self._dispatch, namespace=NAMESPACE)
		self._client.on("disconnect", self._on_disconnect, namespace=NAMESPACE)
		self._client.on("connect_error", self._on_connect_error, namespace=NAMESPACE)

	@classmethod
	async def connect(
		cls,
		url: str,
		room_id: str,
		auth_token: str,
		*,
		handlers: Iterable[MessageHandler] = (),
		client: Optional[socketio.AsyncClient] = None,
	) -> "LessonChannel":
		"""Open a channel for one lesson session.

		Handlers passed here are registered before the connection opens, so the
		`history_dump` sent right after the handshake is never missed.
		"""
		channel = cls(url, client=client)
		for handler in handlers:
			channel.on_message(handler)
		await channel.open(room_id, auth_token)
		return channel

	@property
	def state(self) -> ChannelState:
		return self._state

	@property
	def is_open(self) -> bool:
		return self._state is ChannelState.OPEN

	async def open(self, room_id: str, auth_token: str) -> None:
		if self._state is not ChannelState.IDLE:
			raise ChannelClosedError(self._state, "already_used")
		try:
			await self._client.connect(
				self._url,
				namespaces=[NAMESPACE],
				auth={"token": auth_token, "lesson_id": room_id},
			)
		except socketio.exceptions.ConnectionError as exc:
			self._terminate(ChannelState.FAILED, str(exc) or "connect_failed")
			raise ChannelClosedError(self._state, self.close_reason) from exc
		self._state = ChannelState.OPEN
		logger.info("lesson channel open lesson=%s", room_id)

	async def send(self, message_type: str, payload: Any) -> None:
		if self._state is not ChannelState.OPEN:
			raise ChannelClosedError(self._state, self.close_reason)
		try:
			await self._client.emit(message_type, payload, namespace=NAMESPACE)
		except socketio.exceptions.SocketIOError as exc:
			self._terminate(ChannelState.FAILED, str(exc) or "send_failed")
			raise ChannelClosedError(self._state, self.close_reason) from exc

	def on_message(self, handler: MessageHandler) -> MessageHandler:
		self._handlers.append(handler)
		return handler

	async def close(self) -> None:
		if self._state in TERMINAL_STATES:
			return
		was_open = self._state is ChannelState.OPEN
		self._terminate(ChannelState.CLOSED, "client_close")
		if was_open:
			await self._client.disconnect()

	async def wait_closed(self) -> ChannelState:
		await self._closed.wait()
		return self._state

	async def _dispatch(self, event: str, data: Any = None) -> None:
		for handler in list(self._handlers):
			try:
				result = handler(event, data)
				if inspect.isawaitable(result):
					await result
			except Exception:
				logger.exception("lesson channel handler failed event=%s", event)

	async def _on_disconnect(self, reason: Any = None) -> None:
		if self._state is ChannelState.OPEN:
			self._terminate(ChannelState.CLOSED, str(reason) if reason else "server_disconnect")
			logger.info("lesson channel closed by server reason=%s", self.close_reason)

	async def _on_connect_error(self, data: Any = None) -> None:
		message = data.get("message") if isinstance(data, dict) else data
		self._terminate(ChannelState.FAILED, str(message) if message else "connect_error")
		logger.warning("lesson channel refused reason=%s", self.close_reason)

	def _terminate(self, state: ChannelState, reason: str) -> None:
		if self._state in TERMINAL_STATES:
			return
		self._state = state
		self.close_reason = reason
		self._closed.set()
