"""Typed zone actions and the key-wise merge that applies them.

Every ZONE_ACTION frame is parsed into exactly one of the update types below.
Each update knows the activity it belongs to, which roles may send it and the
partial state it contributes. The merge itself is a shallow key-wise overwrite,
so concurrent updates touching different keys commute.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from classroom.domain.lessons import models
from classroom.domain.lessons.policy import ZoneActionError
from classroom.domain.lessons.schemas import ZoneActionPayload, shape_list_adapter

BOTH_ROLES = ("teacher", "student")
TEACHER_ONLY = ("teacher",)
STUDENT_ONLY = ("student",)


@dataclass(frozen=True, slots=True)
class DrawEvent:
	shapes: list
	activity_type = "drawing"
	action = "draw_event"
	allowed_roles = BOTH_ROLES

	def partial(self) -> Dict[str, Any]:
		return {"shapes": self.shapes}


@dataclass(frozen=True, slots=True)
class ClearBoard:
	activity_type = "drawing"
	action = "clear_board"
	allowed_roles = BOTH_ROLES

	def partial(self) -> Dict[str, Any]:
		return {"shapes": []}


@dataclass(frozen=True, slots=True)
class MatchUpdate:
	matches: Optional[Dict[str, str]] = None
	results_revealed: Optional[bool] = None
	activity_type = "matching"
	action = "MATCH_UPDATE"

	@property
	def allowed_roles(self) -> Tuple[str, ...]:
		# Only the teacher decides when correctness feedback is shown.
		return TEACHER_ONLY if self.results_revealed is not None else BOTH_ROLES

	def partial(self) -> Dict[str, Any]:
		partial: Dict[str, Any] = {}
		if self.matches is not None:
			partial["matches"] = self.matches
		if self.results_revealed is not None:
			partial["resultsRevealed"] = self.results_revealed
		return partial


@dataclass(frozen=True, slots=True)
class MatchReset:
	activity_type = "matching"
	action = "MATCH_RESET"
	allowed_roles = TEACHER_ONLY

	def partial(self) -> Dict[str, Any]:
		return {"matches": {}, "resultsRevealed": False}


@dataclass(frozen=True, slots=True)
class GapFillTyped:
	answers: Dict[str, str]
	activity_type = "gap_fill"
	action = "TYPE_ANSWER"
	allowed_roles = STUDENT_ONLY

	def partial(self) -> Dict[str, Any]:
		return {"answers": self.answers}


@dataclass(frozen=True, slots=True)
class GapFillChecked:
	answers: Dict[str, str]
	score: Optional[Dict[str, int]] = None
	activity_type = "gap_fill"
	action = "CHECK_ANSWER"
	allowed_roles = STUDENT_ONLY

	def partial(self) -> Dict[str, Any]:
		return {"answers": self.answers, "submitted": True, "score": self.score}


@dataclass(frozen=True, slots=True)
class GapFillReset:
	activity_type = "gap_fill"
	action = "RESET"
	allowed_roles = TEACHER_ONLY

	def partial(self) -> Dict[str, Any]:
		return {"answers": {}, "submitted": False, "score": None}


@dataclass(frozen=True, slots=True)
class PageChange:
	page: int
	activity_type = "paginated_document"
	action = "page_change"
	allowed_roles = TEACHER_ONLY

	def partial(self) -> Dict[str, Any]:
		return {"page": self.page}


ZoneUpdate = Union[
	DrawEvent,
	ClearBoard,
	MatchUpdate,
	MatchReset,
	GapFillTyped,
	GapFillChecked,
	GapFillReset,
	PageChange,
]


def _string_map(value: Any, field: str) -> Dict[str, str]:
	if not isinstance(value, Mapping):
		raise ZoneActionError(f"invalid_{field}")
	return {str(key): "" if item is None else str(item) for key, item in value.items()}


def _parse_draw(data: Dict[str, Any]) -> ZoneUpdate:
	shapes = data.get("shapes")
	if not isinstance(shapes, list):
		raise ZoneActionError("invalid_shapes")
	try:
		shape_list_adapter.validate_python(shapes)
	except ValidationError as exc:
		raise ZoneActionError("invalid_shapes") from exc
	# Keep the sender's exact encoding so its echo baseline still matches.
	return DrawEvent(shapes=shapes)


def _parse_clear(data: Dict[str, Any]) -> ZoneUpdate:
	return ClearBoard()


def _parse_match_update(data: Dict[str, Any]) -> ZoneUpdate:
	matches = data.get("matches")
	revealed = data.get("resultsRevealed")
	if matches is None and revealed is None:
		raise ZoneActionError("empty_match_update")
	if revealed is not None and not isinstance(revealed, bool):
		raise ZoneActionError("invalid_resultsRevealed")
	parsed = _string_map(matches, "matches") if matches is not None else None
	if revealed is False and parsed == {}:
		return MatchReset()
	return MatchUpdate(matches=parsed, results_revealed=revealed)


def _parse_match_reset(data: Dict[str, Any]) -> ZoneUpdate:
	return MatchReset()


def _parse_type_answer(data: Dict[str, Any]) -> ZoneUpdate:
	return GapFillTyped(answers=_string_map(data.get("answers"), "answers"))


def _parse_check_answer(data: Dict[str, Any]) -> ZoneUpdate:
	score = data.get("score")
	parsed_score: Optional[Dict[str, int]] = None
	if score is not None:
		if not isinstance(score, Mapping):
			raise ZoneActionError("invalid_score")
		try:
			parsed_score = {"correct": int(score.get("correct", 0)), "total": int(score.get("total", 0))}
		except (TypeError, ValueError) as exc:
			raise ZoneActionError("invalid_score") from exc
	return GapFillChecked(answers=_string_map(data.get("answers"), "answers"), score=parsed_score)


def _parse_gap_reset(data: Dict[str, Any]) -> ZoneUpdate:
	return GapFillReset()


def _parse_page_change(data: Dict[str, Any]) -> ZoneUpdate:
	page = data.get("page")
	if isinstance(page, bool) or not isinstance(page, int) or page < 1:
		raise ZoneActionError("invalid_page")
	return PageChange(page=page)


_PARSERS: Dict[Tuple[str, str], Callable[[Dict[str, Any]], ZoneUpdate]] = {
	("drawing", "draw_event"): _parse_draw,
	("drawing", "clear_board"): _parse_clear,
	("matching", "MATCH_UPDATE"): _parse_match_update,
	("matching", "MATCH_RESET"): _parse_match_reset,
	("gap_fill", "TYPE_ANSWER"): _parse_type_answer,
	("gap_fill", "CHECK_ANSWER"): _parse_check_answer,
	("gap_fill", "RESET"): _parse_gap_reset,
	("paginated_document", "page_change"): _parse_page_change,
}


def parse_zone_action(raw: Any) -> ZoneUpdate:
	"""Turn a raw ZONE_ACTION payload into a typed update, or raise ZoneActionError."""
	if not isinstance(raw, Mapping):
		raise ZoneActionError("invalid_payload")
	try:
		frame = ZoneActionPayload.model_validate(raw)
	except ValidationError as exc:
		raise ZoneActionError("invalid_payload") from exc
	activity_type = models.canonical_activity_type(frame.activity_type)
	if activity_type is None:
		raise ZoneActionError("unknown_activity_type")
	if activity_type == "quiz":
		# Quiz selections are a private assessment and stay on each client.
		raise ZoneActionError("quiz_not_synchronized")
	parser = _PARSERS.get((activity_type, frame.action))
	if parser is None:
		raise ZoneActionError("unsupported_action")
	return parser(frame.data())


def merge_partial(current: Mapping[str, Any], partial: Mapping[str, Any]) -> Dict[str, Any]:
	"""Shallow key-wise overwrite. Keys absent from `partial` are kept."""
	merged = dict(current)
	merged.update(partial)
	return merged


def merge_zone(current: Mapping[str, Any], update: ZoneUpdate) -> Dict[str, Any]:
	"""Apply a typed update to the active zone and return the new zone state.

	An update for a different activity type than the one currently held
	replaces the zone, so fields of the previous activity never leak.
	"""
	held_type = current.get("activity_type")
	base: Mapping[str, Any] = current if held_type in (None, update.activity_type) else {}
	merged = merge_partial(base, update.partial())
	merged["activity_type"] = update.activity_type
	merged["action"] = update.action
	return merged
