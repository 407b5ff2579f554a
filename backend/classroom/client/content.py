"""Read-only client for the external lesson-content API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from classroom.settings import settings

logger = logging.getLogger(__name__)


class LessonContentError(RuntimeError):
	def __init__(self, code: str, *, lesson_id: Any = None, status_code: Optional[int] = None) -> None:
		super().__init__(code)
		self.code = code
		self.lesson_id = lesson_id
		self.status_code = status_code


class LessonContentClient:
	"""`GET /api/curriculum/lessons/{id}/` returning the full lesson body."""

	def __init__(
		self,
		base_url: Optional[str] = None,
		*,
		token: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		headers = {"Authorization": f"Bearer {token}"} if token else {}
		self._http = httpx.AsyncClient(
			base_url=(base_url or settings.lesson_api_base_url).rstrip("/"),
			headers=headers,
			timeout=settings.lesson_api_timeout_seconds if timeout is None else timeout,
			transport=transport,
		)

	async def __aenter__(self) -> "LessonContentClient":
		return self

	async def __aexit__(self, *exc_info: object) -> None:
		await self.aclose()

	async def aclose(self) -> None:
		await self._http.aclose()

	async def fetch_lesson(self, lesson_id: Any) -> Dict[str, Any]:
		try:
			response = await self._http.get(f"/api/curriculum/lessons/{lesson_id}/")
		except httpx.HTTPError as exc:
			raise LessonContentError("lesson_fetch_failed", lesson_id=lesson_id) from exc
		if response.status_code == 404:
			raise LessonContentError("lesson_not_found", lesson_id=lesson_id, status_code=404)
		if response.status_code != 200:
			raise LessonContentError("lesson_fetch_failed", lesson_id=lesson_id, status_code=response.status_code)
		try:
			body = response.json()
		except ValueError as exc:
			raise LessonContentError("lesson_invalid_body", lesson_id=lesson_id, status_code=200) from exc
		if not isinstance(body, dict):
			raise LessonContentError("lesson_invalid_body", lesson_id=lesson_id, status_code=200)
		return body
