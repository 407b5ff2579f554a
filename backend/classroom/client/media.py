"""Secondary video position sync.

The teacher's player is authoritative: play starts a heartbeat, pause stops
it, seeks go out immediately. Receivers correct only when drift exceeds the
tolerance, and suppress their own state-change callbacks for a short window
after any programmatic correction.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from classroom.client.channel import ChannelClosedError
from classroom.settings import settings

logger = logging.getLogger(__name__)

Send = Callable[[str, dict], Awaitable[None]]


class MediaSurface(Protocol):
	"""The embedded player. Only what the sync needs."""

	def current_time(self) -> float: ...

	def is_playing(self) -> bool: ...

	def seek(self, t: float) -> None: ...

	def play(self) -> None: ...

	def pause(self) -> None: ...


@dataclass(slots=True)
class PendingPosition:
	state: str
	t: float


class MediaSync:
	def __init__(
		self,
		role: str,
		send: Send,
		*,
		heartbeat_seconds: Optional[float] = None,
		drift_tolerance: Optional[float] = None,
		suppress_seconds: Optional[float] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.role = role
		self._send = send
		self.heartbeat_seconds = settings.video_heartbeat_seconds if heartbeat_seconds is None else heartbeat_seconds
		self.drift_tolerance = settings.video_drift_tolerance_seconds if drift_tolerance is None else drift_tolerance
		self.suppress_seconds = settings.video_echo_suppress_seconds if suppress_seconds is None else suppress_seconds
		self._clock = clock
		self._surface: Optional[MediaSurface] = None
		self._heartbeat: Optional[asyncio.Task] = None
		self._suppress_until = 0.0
		self.pending: Optional[PendingPosition] = None

	@property
	def ready(self) -> bool:
		return self._surface is not None

	@property
	def heartbeat_running(self) -> bool:
		return self._heartbeat is not None and not self._heartbeat.done()

	def is_suppressed(self) -> bool:
		return self._clock() < self._suppress_until

	def attach(self, surface: MediaSurface) -> None:
		"""Called once the player is ready. Applies any buffered position."""
		self._surface = surface
		pending, self.pending = self.pending, None
		if pending is not None:
			self._apply_position(pending.state, pending.t)

	async def detach(self) -> None:
		self._surface = None
		await self.stop_heartbeat()

	# Teacher side: player state changes become broadcasts.

	async def on_local_play(self) -> None:
		if not self._authoritative():
			return
		await self._send("VIDEO_PLAY", {"t": self._position()})
		await self.stop_heartbeat()
		self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name="video-heartbeat")

	async def on_local_pause(self) -> None:
		if not self._authoritative():
			return
		await self.stop_heartbeat()
		await self._send("VIDEO_PAUSE", {"t": self._position()})

	async def on_local_seek(self) -> None:
		if not self._authoritative():
			return
		await self._send("VIDEO_SEEK", {"t": self._position()})

	async def stop_heartbeat(self) -> None:
		task, self._heartbeat = self._heartbeat, None
		if task is None or task.done():
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass

	async def _heartbeat_loop(self) -> None:
		try:
			while True:
				await asyncio.sleep(self.heartbeat_seconds)
				if self._surface is None:
					return
				await self._send("VIDEO_SYNC", {"t": self._position()})
		except asyncio.CancelledError:
			raise
		except ChannelClosedError as exc:
			logger.warning("video heartbeat stopped, channel closed state=%s reason=%s", exc.state.value, exc.reason)
		except Exception:
			logger.exception("video heartbeat loop failed")

	# Receiver side: inbound media events.

	def apply(self, event: str, payload: Mapping[str, Any]) -> bool:
		"""Apply an inbound VIDEO_* frame. Returns True when the player was touched."""
		if self.role == "teacher":
			return False
		try:
			t = float(payload["t"])
		except (KeyError, TypeError, ValueError):
			logger.debug("media frame without position event=%s", event)
			return False
		if event == "VIDEO_SYNC":
			return self._correct_drift(t)
		if event == "VIDEO_STATE":
			state = "playing" if payload.get("state") == "playing" else "paused"
		elif event == "VIDEO_PLAY":
			state = "playing"
		elif event == "VIDEO_PAUSE":
			state = "paused"
		elif event == "VIDEO_SEEK":
			state = ""
		else:
			return False
		if self._surface is None:
			previous = self.pending.state if self.pending is not None else "paused"
			self.pending = PendingPosition(state=state or previous, t=t)
			return False
		if event == "VIDEO_PAUSE":
			self._suppress()
			self._surface.pause()
			return True
		self._apply_position(state, t)
		return True

	def _correct_drift(self, t: float) -> bool:
		if self._surface is None:
			self.pending = PendingPosition(state="playing", t=t)
			return False
		drift = abs(self._surface.current_time() - t)
		if drift <= self.drift_tolerance:
			return False
		was_playing = self._surface.is_playing()
		self._suppress()
		self._surface.seek(t)
		if was_playing:
			self._surface.play()
		logger.debug("media drift corrected drift=%.3f t=%.3f", drift, t)
		return True

	def _apply_position(self, state: str, t: float) -> None:
		surface = self._surface
		if surface is None:
			return
		self._suppress()
		surface.seek(t)
		if state == "playing":
			surface.play()
		elif state == "paused":
			surface.pause()

	def _suppress(self) -> None:
		self._suppress_until = self._clock() + self.suppress_seconds

	def _authoritative(self) -> bool:
		return self.role == "teacher" and self._surface is not None and not self.is_suppressed()

	def _position(self) -> float:
		return float(self._surface.current_time()) if self._surface is not None else 0.0
