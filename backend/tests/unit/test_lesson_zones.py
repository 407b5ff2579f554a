import pytest

from classroom.domain.lessons import zones
from classroom.domain.lessons.policy import ZoneActionError


def _shape(shape_id: str = "shape-1", x: float = 0.25) -> dict:
	return {"id": shape_id, "tool": "pencil", "stroke": "#000", "strokeWidth": 3, "points": [x, 0.5, 0.3, 0.6]}


def test_parse_draw_event_keeps_sender_encoding():
	shapes = [_shape()]
	update = zones.parse_zone_action({"activity_type": "drawing", "action": "draw_event", "shapes": shapes})

	assert isinstance(update, zones.DrawEvent)
	assert update.partial() == {"shapes": shapes}
	assert update.allowed_roles == ("teacher", "student")


def test_parse_accepts_builder_aliases():
	update = zones.parse_zone_action({"activity_type": "pdf", "action": "page_change", "page": 3})

	assert isinstance(update, zones.PageChange)
	assert update.activity_type == "paginated_document"
	assert update.allowed_roles == ("teacher",)


@pytest.mark.parametrize(
	"raw, code",
	[
		("not-a-dict", "invalid_payload"),
		({"action": "draw_event"}, "invalid_payload"),
		({"activity_type": "hologram", "action": "x"}, "unknown_activity_type"),
		({"activity_type": "quiz", "action": "SELECT", "selected": 1}, "quiz_not_synchronized"),
		({"activity_type": "matching", "action": "SHUFFLE"}, "unsupported_action"),
		({"activity_type": "drawing", "action": "draw_event", "shapes": "nope"}, "invalid_shapes"),
		({"activity_type": "drawing", "action": "draw_event", "shapes": [{"id": "a", "tool": "laser"}]}, "invalid_shapes"),
		({"activity_type": "matching", "action": "MATCH_UPDATE"}, "empty_match_update"),
		({"activity_type": "matching", "action": "MATCH_UPDATE", "resultsRevealed": "yes"}, "invalid_resultsRevealed"),
		({"activity_type": "gap_fill", "action": "TYPE_ANSWER", "answers": ["a"]}, "invalid_answers"),
		({"activity_type": "gap_fill", "action": "CHECK_ANSWER", "answers": {}, "score": {"correct": "x"}}, "invalid_score"),
		({"activity_type": "paginated_document", "action": "page_change", "page": 0}, "invalid_page"),
		({"activity_type": "paginated_document", "action": "page_change", "page": True}, "invalid_page"),
	],
)
def test_parse_rejects_malformed_actions(raw, code):
	with pytest.raises(ZoneActionError) as exc:
		zones.parse_zone_action(raw)
	assert exc.value.code == code


def test_reveal_toggle_is_teacher_only_but_matching_is_open():
	reveal = zones.parse_zone_action({"activity_type": "matching", "action": "MATCH_UPDATE", "resultsRevealed": True})
	pick = zones.parse_zone_action({"activity_type": "matching", "action": "MATCH_UPDATE", "matches": {"dog": "chien"}})

	assert reveal.allowed_roles == ("teacher",)
	assert pick.allowed_roles == ("teacher", "student")


def test_empty_matches_with_reveal_off_is_a_reset():
	update = zones.parse_zone_action(
		{"activity_type": "matching", "action": "MATCH_UPDATE", "matches": {}, "resultsRevealed": False}
	)

	assert isinstance(update, zones.MatchReset)


def test_gap_fill_typing_is_student_only():
	update = zones.parse_zone_action({"activity_type": "gap_fill", "action": "TYPE_ANSWER", "answers": {"1": "world"}})

	assert update.allowed_roles == ("student",)
	assert update.partial() == {"answers": {"1": "world"}}


def test_merge_of_disjoint_updates_commutes():
	base = {"activity_type": "matching", "action": "MATCH_UPDATE", "matches": {"a": "1"}}
	a = {"matches": {"a": "2"}}
	b = {"resultsRevealed": True}

	ab = zones.merge_partial(zones.merge_partial(base, a), b)
	ba = zones.merge_partial(zones.merge_partial(base, b), a)

	assert ab == ba == {"activity_type": "matching", "action": "MATCH_UPDATE", "matches": {"a": "2"}, "resultsRevealed": True}


def test_merge_keeps_keys_absent_from_update():
	current = {"activity_type": "gap_fill", "action": "TYPE_ANSWER", "answers": {"1": "x"}, "submitted": False}
	merged = zones.merge_zone(current, zones.GapFillChecked(answers={"1": "y"}, score={"correct": 1, "total": 1}))

	assert merged == {
		"activity_type": "gap_fill",
		"action": "CHECK_ANSWER",
		"answers": {"1": "y"},
		"submitted": True,
		"score": {"correct": 1, "total": 1},
	}


def test_match_reset_clears_both_fields_in_one_state():
	current = {"activity_type": "matching", "action": "MATCH_UPDATE", "matches": {"a": "1"}, "resultsRevealed": True}

	merged = zones.merge_zone(current, zones.MatchReset())

	assert merged["matches"] == {}
	assert merged["resultsRevealed"] is False


def test_clear_board_empties_shapes():
	current = {"activity_type": "drawing", "action": "draw_event", "shapes": [_shape()]}

	merged = zones.merge_zone(current, zones.ClearBoard())

	assert merged == {"activity_type": "drawing", "action": "clear_board", "shapes": []}


def test_update_for_other_activity_replaces_zone():
	current = {"activity_type": "matching", "action": "MATCH_UPDATE", "matches": {"a": "1"}, "resultsRevealed": True}

	merged = zones.merge_zone(current, zones.PageChange(page=2))

	assert merged == {"activity_type": "paginated_document", "action": "page_change", "page": 2}
