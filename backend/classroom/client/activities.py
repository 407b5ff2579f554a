"""Client controllers for the activity zones that share the merge protocol.

Each controller owns the local view of one activity, emits partial updates
through the zone emitter and reconciles the server's merged broadcast
against its echo baselines. Quiz is the exception: it never leaves the
client.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from classroom.client.echo import EchoGuard, LiveGate
from classroom.domain.lessons.policy import LessonPolicyError

logger = logging.getLogger(__name__)

ZoneEmit = Callable[[str, Dict[str, Any]], Awaitable[None]]

_GAP_PATTERN = re.compile(r"{([^}]+)}")


def _require(role: str, allowed: str) -> None:
	if role != allowed:
		raise LessonPolicyError(f"{allowed}_only", status_code=403)


class MatchingBoard:
	"""Question/answer matching with a synchronized reveal flag."""

	activity_type = "matching"

	def __init__(
		self,
		role: str,
		emit: ZoneEmit,
		*,
		echo: Optional[EchoGuard] = None,
		gate: Optional[LiveGate] = None,
		pairs: Optional[Sequence[Mapping[str, str]]] = None,
	) -> None:
		self.role = role
		self._emit = emit
		self.echo = echo or EchoGuard()
		self.gate = gate or LiveGate()
		self.pairs: List[Tuple[str, str]] = [(str(p.get("left", "")), str(p.get("right", ""))) for p in pairs or []]
		self.matches: Dict[str, str] = {}
		self.results_revealed = False

	def load(self, content: Any) -> None:
		raw = content.get("pairs") if isinstance(content, Mapping) else None
		self.pairs = [(str(p.get("left", "")), str(p.get("right", ""))) for p in raw or [] if isinstance(p, Mapping)]

	def is_correct(self, question: str) -> bool:
		answer = self.matches.get(question)
		return any(left == question and right == answer for left, right in self.pairs)

	def score(self) -> Dict[str, int]:
		correct = sum(1 for left, _ in self.pairs if self.is_correct(left))
		return {"correct": correct, "total": len(self.pairs)}

	async def match(self, question: str, answer: str) -> bool:
		if self.results_revealed:
			return False
		# An answer sits in at most one slot.
		matches = {q: a for q, a in self.matches.items() if a != answer}
		matches[question] = answer
		await self._send_matches(matches)
		return True

	async def unmatch(self, question: str) -> bool:
		if self.results_revealed or question not in self.matches:
			return False
		matches = dict(self.matches)
		matches.pop(question)
		await self._send_matches(matches)
		return True

	async def toggle_reveal(self) -> bool:
		_require(self.role, "teacher")
		revealed = not self.results_revealed
		self.results_revealed = revealed
		# Optimistic until the server's echo of this toggle comes back.
		self.gate.begin("resultsRevealed")
		self.echo.record("resultsRevealed", revealed)
		self.echo.record("matches", self.matches)
		await self._emit("MATCH_UPDATE", {"matches": dict(self.matches), "resultsRevealed": revealed})
		return revealed

	async def reset(self) -> None:
		_require(self.role, "teacher")
		self.matches = {}
		self.results_revealed = False
		self.echo.record("matches", {})
		self.echo.record("resultsRevealed", False)
		# One frame, so nobody can observe cleared matches with the old reveal flag.
		await self._emit("MATCH_RESET", {"matches": {}, "resultsRevealed": False})

	def apply_remote(self, zone: Mapping[str, Any]) -> bool:
		changed = False
		if "resultsRevealed" in zone:
			revealed = zone["resultsRevealed"]
			if self.echo.is_echo("resultsRevealed", revealed):
				self.gate.end("resultsRevealed")
			elif not self.gate.is_live("resultsRevealed") and isinstance(revealed, bool):
				self.results_revealed = revealed
				self.echo.record("resultsRevealed", revealed)
				changed = True
		matches = zone.get("matches")
		if isinstance(matches, Mapping) and not self.echo.is_echo("matches", matches):
			self.matches = {str(q): str(a) for q, a in matches.items()}
			self.echo.record("matches", self.matches)
			changed = True
		return changed

	def reset_local(self) -> None:
		self.matches = {}
		self.results_revealed = False
		self.gate.end("resultsRevealed")
		self.echo.reset("matches")
		self.echo.reset("resultsRevealed")

	async def _send_matches(self, matches: Dict[str, str]) -> None:
		self.matches = matches
		self.echo.record("matches", matches)
		await self._emit("MATCH_UPDATE", {"matches": dict(matches)})


def split_gap_text(text: str) -> List[str]:
	"""Split `"Hello {world}"` into parts; odd indices are the gaps."""
	return _GAP_PATTERN.split(text or "")


def score_answers(parts: Sequence[str], answers: Mapping[str, str]) -> Dict[str, int]:
	total = 0
	correct = 0
	for idx in range(1, len(parts), 2):
		total += 1
		given = answers.get(str(idx))
		if given is not None and given.strip().lower() == parts[idx].strip().lower():
			correct += 1
	return {"correct": correct, "total": total}


class GapFillSheet:
	"""Fill-in-the-gaps text. The student types, the teacher watches live."""

	activity_type = "gap_fill"

	def __init__(
		self,
		role: str,
		emit: ZoneEmit,
		*,
		echo: Optional[EchoGuard] = None,
		text: str = "",
	) -> None:
		self.role = role
		self._emit = emit
		self.echo = echo or EchoGuard()
		self.parts = split_gap_text(text)
		self.answers: Dict[str, str] = {}
		self.submitted = False
		self.score: Optional[Dict[str, int]] = None

	def load(self, content: Any) -> None:
		text = content.get("text") if isinstance(content, Mapping) else None
		self.parts = split_gap_text(str(text or ""))

	@property
	def gap_indices(self) -> List[int]:
		return list(range(1, len(self.parts), 2))

	async def type_answer(self, index: int, value: str) -> bool:
		_require(self.role, "student")
		if self.submitted or index not in self.gap_indices:
			return False
		answers = dict(self.answers)
		answers[str(index)] = value
		self.answers = answers
		self.echo.record("answers", answers)
		await self._emit("TYPE_ANSWER", {"answers": dict(answers)})
		return True

	async def submit(self) -> Dict[str, int]:
		_require(self.role, "student")
		score = score_answers(self.parts, self.answers)
		self.submitted = True
		self.score = score
		self.echo.record("answers", self.answers)
		self.echo.record("submitted", True)
		await self._emit("CHECK_ANSWER", {"answers": dict(self.answers), "submitted": True, "score": score})
		return score

	async def reset(self) -> None:
		_require(self.role, "teacher")
		self.reset_local()
		self.echo.record("answers", {})
		self.echo.record("submitted", False)
		await self._emit("RESET", {})

	def apply_remote(self, zone: Mapping[str, Any]) -> bool:
		if self.role == "student" and zone.get("action") != "RESET":
			# The student's own typing is the source of truth for its answers.
			return False
		changes = self.echo.changes(zone, ("answers", "submitted"))
		if not changes and "score" not in zone:
			return False
		answers = zone.get("answers")
		if isinstance(answers, Mapping):
			self.answers = {str(k): "" if v is None else str(v) for k, v in answers.items()}
			self.echo.record("answers", self.answers)
		if "submitted" in zone:
			self.submitted = bool(zone["submitted"])
			self.echo.record("submitted", self.submitted)
		score = zone.get("score")
		self.score = dict(score) if isinstance(score, Mapping) else None
		return bool(changes)

	def reset_local(self) -> None:
		self.answers = {}
		self.submitted = False
		self.score = None


class DocumentPager:
	"""Paginated document where the teacher's page is authoritative."""

	activity_type = "paginated_document"

	def __init__(
		self,
		role: str,
		emit: ZoneEmit,
		*,
		echo: Optional[EchoGuard] = None,
		num_pages: Optional[int] = None,
	) -> None:
		self.role = role
		self._emit = emit
		self.echo = echo or EchoGuard()
		self.num_pages = num_pages
		self.page = 1

	async def go_to(self, page: int) -> bool:
		if page < 1 or (self.num_pages is not None and page > self.num_pages):
			return False
		self.page = page
		if self.role == "teacher":
			self.echo.record("page", page)
			await self._emit("page_change", {"page": page})
		return True

	async def next(self) -> bool:
		return await self.go_to(self.page + 1)

	async def previous(self) -> bool:
		return await self.go_to(self.page - 1)

	def apply_remote(self, zone: Mapping[str, Any]) -> bool:
		page = zone.get("page")
		if self.role == "teacher" or isinstance(page, bool) or not isinstance(page, int):
			return False
		if page == self.page:
			return False
		# Overwrite, never merge: a student's local page never survives a teacher update.
		self.page = page
		self.echo.record("page", page)
		return True

	def reset_local(self) -> None:
		self.page = 1
		self.echo.reset("page")


class QuizCard:
	"""Single-question quiz. Selections stay on this client and are never sent."""

	activity_type = "quiz"

	def __init__(self, role: str, content: Optional[Mapping[str, Any]] = None) -> None:
		self.role = role
		self.question = ""
		self.options: List[str] = []
		self.correct_index: Optional[int] = None
		self.selected: Optional[int] = None
		self.submitted = False
		if content is not None:
			self.load(content)

	def load(self, content: Any) -> None:
		data = content if isinstance(content, Mapping) else {}
		self.question = str(data.get("question") or "")
		self.options = [str(option) for option in data.get("options") or []]
		correct = data.get("correct_index")
		self.correct_index = correct if isinstance(correct, int) and not isinstance(correct, bool) else None
		self.selected = None
		self.submitted = False

	@property
	def revealed(self) -> bool:
		return self.role == "teacher" or self.submitted

	def select(self, index: int) -> bool:
		if self.submitted and self.role != "teacher":
			return False
		if not 0 <= index < len(self.options):
			return False
		self.selected = index
		return True

	def submit(self) -> Optional[bool]:
		if self.selected is None:
			return None
		self.submitted = True
		return self.is_correct

	@property
	def is_correct(self) -> bool:
		return self.selected is not None and self.selected == self.correct_index
