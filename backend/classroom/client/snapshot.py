"""Best-effort local cache of the minimal identifiers needed to resume.

Only the lesson id, title and slide index are stored, never lesson content.
Writes are debounced and every storage failure is swallowed: the cache is a
convenience and the room state is always re-fetched.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from classroom.obs import metrics as obs_metrics
from classroom.settings import settings

logger = logging.getLogger(__name__)


class StorageQuotaExceeded(RuntimeError):
	"""The snapshot store has no room for the write."""


class SnapshotStore(Protocol):
	def get(self, key: str) -> Optional[str]: ...

	def set(self, key: str, value: str) -> None: ...

	def remove(self, key: str) -> None: ...


def _size(data: Mapping[str, str]) -> int:
	return sum(len(key.encode()) + len(value.encode()) for key, value in data.items())


class MemorySnapshotStore:
	def __init__(self, quota_bytes: Optional[int] = None) -> None:
		self.quota_bytes = settings.snapshot_quota_bytes if quota_bytes is None else quota_bytes
		self._data: Dict[str, str] = {}

	def get(self, key: str) -> Optional[str]:
		return self._data.get(key)

	def set(self, key: str, value: str) -> None:
		candidate = dict(self._data)
		candidate[key] = value
		if _size(candidate) > self.quota_bytes:
			raise StorageQuotaExceeded(key)
		self._data = candidate

	def remove(self, key: str) -> None:
		self._data.pop(key, None)

	def keys(self) -> list[str]:
		return sorted(self._data)


class FileSnapshotStore:
	"""JSON object on disk, rewritten atomically on every change."""

	def __init__(self, path: os.PathLike[str] | str, quota_bytes: Optional[int] = None) -> None:
		self.path = Path(path)
		self.quota_bytes = settings.snapshot_quota_bytes if quota_bytes is None else quota_bytes

	def _load(self) -> Dict[str, str]:
		try:
			raw = self.path.read_text(encoding="utf-8")
		except FileNotFoundError:
			return {}
		try:
			data = json.loads(raw)
		except ValueError:
			logger.warning("snapshot file unreadable, starting empty path=%s", self.path)
			return {}
		if not isinstance(data, dict):
			return {}
		return {str(key): str(value) for key, value in data.items()}

	def _dump(self, data: Dict[str, str]) -> None:
		self.path.parent.mkdir(parents=True, exist_ok=True)
		tmp = self.path.with_suffix(self.path.suffix + ".tmp")
		tmp.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
		os.replace(tmp, self.path)

	def get(self, key: str) -> Optional[str]:
		return self._load().get(key)

	def set(self, key: str, value: str) -> None:
		data = self._load()
		data[key] = value
		if _size(data) > self.quota_bytes:
			raise StorageQuotaExceeded(key)
		self._dump(data)

	def remove(self, key: str) -> None:
		data = self._load()
		if data.pop(key, None) is not None:
			self._dump(data)


def snapshot_key(session_id: str) -> str:
	return f"lesson_snap_{session_id}"


def index_key(session_id: str) -> str:
	return f"lesson_index_{session_id}"


def safe_set(store: SnapshotStore, key: str, value: str) -> bool:
	try:
		store.set(key, value)
	except StorageQuotaExceeded:
		logger.warning("snapshot write skipped, quota exceeded key=%s", key)
		obs_metrics.snapshot_write_failed("quota")
		return False
	except OSError:
		logger.warning("snapshot write failed key=%s", key, exc_info=True)
		obs_metrics.snapshot_write_failed("io")
		return False
	return True


@dataclass(slots=True)
class RestoredSnapshot:
	lesson_id: Any
	lesson_title: str
	slide_index: int


class ResilienceSnapshot:
	"""Debounced writer and reader for one lesson session's snapshot."""

	def __init__(self, session_id: str, store: SnapshotStore, *, debounce_ms: Optional[int] = None) -> None:
		self.session_id = session_id
		self.store = store
		self._delay = (settings.snapshot_debounce_ms if debounce_ms is None else debounce_ms) / 1000.0
		self._handle: Optional[asyncio.TimerHandle] = None
		self._pending: Optional[tuple[Any, str, int]] = None
		self.writes = 0

	@property
	def scheduled(self) -> bool:
		return self._handle is not None

	def schedule(self, lesson: Optional[Mapping[str, Any]], slide_index: int) -> None:
		"""Restart the debounce window with the latest lesson position."""
		if lesson is None:
			return
		self.cancel()
		self._pending = (lesson.get("id"), str(lesson.get("title") or ""), int(slide_index))
		loop = asyncio.get_running_loop()
		self._handle = loop.call_later(self._delay, self._fire)

	def cancel(self) -> None:
		if self._handle is not None:
			self._handle.cancel()
			self._handle = None

	def flush(self) -> None:
		if self._pending is None:
			return
		self.cancel()
		self._fire()

	def _fire(self) -> None:
		self._handle = None
		pending, self._pending = self._pending, None
		if pending is None:
			return
		lesson_id, title, slide_index = pending
		try:
			body = json.dumps({"lessonId": lesson_id, "lessonTitle": title})
		except (TypeError, ValueError):
			logger.debug("snapshot not serializable session=%s", self.session_id, exc_info=True)
			return
		safe_set(self.store, snapshot_key(self.session_id), body)
		safe_set(self.store, index_key(self.session_id), str(slide_index))
		self.writes += 1

	def restore(self) -> Optional[RestoredSnapshot]:
		"""Read the snapshot back. Corrupt entries are removed and ignored."""
		try:
			raw = self.store.get(snapshot_key(self.session_id))
			raw_index = self.store.get(index_key(self.session_id))
		except OSError:
			logger.warning("snapshot read failed session=%s", self.session_id, exc_info=True)
			return None
		if raw is None:
			return None
		try:
			data = json.loads(raw)
		except ValueError:
			data = None
		if not isinstance(data, dict) or data.get("lessonId") is None:
			logger.warning("invalid lesson snapshot removed session=%s", self.session_id)
			self.discard()
			return None
		try:
			slide_index = max(0, int(raw_index)) if raw_index is not None else 0
		except ValueError:
			slide_index = 0
		return RestoredSnapshot(
			lesson_id=data["lessonId"],
			lesson_title=str(data.get("lessonTitle") or ""),
			slide_index=slide_index,
		)

	def discard(self) -> None:
		for key in (snapshot_key(self.session_id), index_key(self.session_id)):
			try:
				self.store.remove(key)
			except OSError:
				logger.debug("snapshot remove failed key=%s", key, exc_info=True)
