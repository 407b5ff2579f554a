"""Freehand and shape drawing with normalized, throttled sync."""

from __future__ import annotations

import copy
import logging
import math
import random
import string
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from classroom.client.echo import EchoGuard, LiveGate
from classroom.settings import settings

logger = logging.getLogger(__name__)

Shape = Dict[str, Any]
ZoneEmit = Callable[[str, Dict[str, Any]], Awaitable[None]]

TOOLS = ("pencil", "eraser", "rect", "circle")
ERASER_STROKE = "#ffffff"
ERASER_WIDTH = 25.0
SHAPES = "shapes"

_ID_ALPHABET = string.ascii_lowercase + string.digits


class DrawState(str, Enum):
	IDLE = "idle"
	DRAWING = "drawing"


def new_shape_id(now_ms: Optional[int] = None) -> str:
	stamp = int(time.time() * 1000) if now_ms is None else now_ms
	suffix = "".join(random.choices(_ID_ALPHABET, k=9))
	return f"shape-{stamp}-{suffix}"


def _scale(shape: Mapping[str, Any], sx: float, sy: float, sr: float) -> Shape:
	scaled = dict(shape)
	points = shape.get("points")
	if points is not None:
		scaled["points"] = [value * (sx if idx % 2 == 0 else sy) for idx, value in enumerate(points)]
	for key, factor in (("x", sx), ("y", sy), ("width", sx), ("height", sy), ("radius", sr)):
		if shape.get(key) is not None:
			scaled[key] = shape[key] * factor
	return scaled


def normalize_shape(shape: Mapping[str, Any], width: float, height: float) -> Shape:
	"""Pixel space to unit space. Radius is scaled by the shorter canvas side."""
	return _scale(shape, 1.0 / width, 1.0 / height, 1.0 / min(width, height))


def denormalize_shape(shape: Mapping[str, Any], width: float, height: float) -> Shape:
	return _scale(shape, width, height, min(width, height))


def normalize_shapes(shapes: Sequence[Mapping[str, Any]], width: float, height: float) -> List[Shape]:
	return [normalize_shape(shape, width, height) for shape in shapes]


def denormalize_shapes(shapes: Sequence[Mapping[str, Any]], width: float, height: float) -> List[Shape]:
	return [denormalize_shape(shape, width, height) for shape in shapes]


class DrawSession:
	"""Per-participant drawing state machine: IDLE -> DRAWING -> IDLE.

	Local shapes are held in this canvas's pixel space. Everything sent or
	received is in unit space so canvases of different sizes agree.
	"""

	def __init__(
		self,
		emit: ZoneEmit,
		*,
		width: float,
		height: float,
		echo: Optional[EchoGuard] = None,
		gate: Optional[LiveGate] = None,
		throttle_ms: Optional[int] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		if width <= 0 or height <= 0:
			raise ValueError("canvas dimensions must be positive")
		self._emit = emit
		self.width = float(width)
		self.height = float(height)
		self.echo = echo or EchoGuard()
		self.gate = gate or LiveGate()
		self._throttle = (settings.draw_throttle_ms if throttle_ms is None else throttle_ms) / 1000.0
		self._clock = clock
		self._last_sync: Optional[float] = None
		self.shapes: List[Shape] = []
		self.state = DrawState.IDLE
		self.current_id: Optional[str] = None
		self.tool = "pencil"
		self.color = "#000000"
		self.brush_size = 3.0
		self.sent = 0

	def resize(self, width: float, height: float) -> None:
		"""Keep the drawing in place relative to the canvas when it changes size."""
		if width <= 0 or height <= 0:
			raise ValueError("canvas dimensions must be positive")
		unit = normalize_shapes(self.shapes, self.width, self.height)
		self.width = float(width)
		self.height = float(height)
		self.shapes = denormalize_shapes(unit, self.width, self.height)

	def pointer_down(self, x: float, y: float) -> Shape:
		if self.tool not in TOOLS:
			raise ValueError(f"unknown tool: {self.tool}")
		shape_id = new_shape_id()
		eraser = self.tool == "eraser"
		shape: Shape = {
			"id": shape_id,
			"tool": self.tool,
			"stroke": ERASER_STROKE if eraser else self.color,
			"strokeWidth": ERASER_WIDTH if eraser else self.brush_size,
		}
		if self.tool in ("pencil", "eraser"):
			shape["points"] = [x, y]
		elif self.tool == "rect":
			shape.update({"x": x, "y": y, "width": 0.0, "height": 0.0})
		else:
			shape.update({"x": x, "y": y, "radius": 0.0})
		self.shapes = [*self.shapes, shape]
		self.current_id = shape_id
		self.state = DrawState.DRAWING
		self.gate.begin(SHAPES)
		return shape

	async def pointer_move(self, x: float, y: float) -> bool:
		"""Extend the current shape. Returns True when an update was sent."""
		if self.state is not DrawState.DRAWING:
			return False
		self.shapes = [self._extend(shape, x, y) if shape["id"] == self.current_id else shape for shape in self.shapes]
		now = self._clock()
		if self._last_sync is not None and now - self._last_sync < self._throttle:
			return False
		self._last_sync = now
		await self._send_shapes()
		return True

	async def pointer_up(self) -> None:
		if self.state is not DrawState.DRAWING:
			return
		self.state = DrawState.IDLE
		self.current_id = None
		self.gate.end(SHAPES)
		# The last geometry of a stroke is never throttled.
		await self._send_shapes()

	async def clear(self) -> None:
		self._drop_local()
		await self._emit("clear_board", {})

	def apply_remote(self, zone: Mapping[str, Any]) -> bool:
		"""Apply a ZONE_STATE_UPDATE for the drawing activity.

		Returns True when local shapes changed.
		"""
		if zone.get("action") == "clear_board":
			self._drop_local()
			return True
		shapes = zone.get(SHAPES)
		if not isinstance(shapes, list):
			return False
		if self.gate.is_live(SHAPES):
			return False
		if self.echo.is_echo(SHAPES, shapes):
			return False
		try:
			local = denormalize_shapes(shapes, self.width, self.height)
		except (TypeError, AttributeError):
			logger.debug("remote shapes ignored", exc_info=True)
			return False
		self.echo.record(SHAPES, shapes)
		self.shapes = local
		return True

	def reset(self) -> None:
		"""Forget the board when the active slide changes."""
		self._drop_local()
		self.echo.reset(SHAPES)

	def _drop_local(self) -> None:
		self.shapes = []
		if self.state is DrawState.DRAWING:
			self.state = DrawState.IDLE
			self.current_id = None
			self.gate.end(SHAPES)
		self.echo.record(SHAPES, [])

	def _extend(self, shape: Shape, x: float, y: float) -> Shape:
		extended = dict(shape)
		tool = shape["tool"]
		if tool in ("pencil", "eraser"):
			extended["points"] = [*shape.get("points", []), x, y]
		elif tool == "rect":
			extended["width"] = x - shape.get("x", 0.0)
			extended["height"] = y - shape.get("y", 0.0)
		elif tool == "circle":
			extended["radius"] = math.hypot(x - shape.get("x", 0.0), y - shape.get("y", 0.0))
		return extended

	async def _send_shapes(self) -> None:
		normalized = normalize_shapes(copy.deepcopy(self.shapes), self.width, self.height)
		self.echo.record(SHAPES, normalized)
		self.sent += 1
		await self._emit("draw_event", {SHAPES: normalized})
