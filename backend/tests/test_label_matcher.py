"""
test_label_matcher.py: Unit tests for label scoring and label → room matching.

Tests cover:
  - score_label / pick_label: numeric, CAD tag and sheet-code penalties,
    multi-word rewards, tie-breaking, empty candidate list
  - match_labels_to_rooms: strict containment pass, tolerance pass,
    minimum-area filter after unit conversion, sequential ids
"""

import pytest

from conftest import rect


def _text(content, x, y):
    from app.services.dxf_parser import TextEntity
    return TextEntity(content=content, insertion_point=(x, y))


def _candidates(*shapes):
    from app.services.polygon_builder import build_polygon
    return [build_polygon(s) for s in shapes]


# ===========================================================================
# Class 1: Scoring heuristic
# ===========================================================================

class TestPickLabel:
    """Tests for pick_label / score_label."""

    def test_sheet_code_loses_to_name(self):
        from app.services.label_matcher import pick_label
        assert pick_label(["AZ451", "BEDROOM"]) == "BEDROOM"

    def test_number_loses_to_name(self):
        from app.services.label_matcher import pick_label
        assert pick_label(["12.5", "KITCHEN"]) == "KITCHEN"

    def test_no_candidates_gives_placeholder(self):
        from app.services.label_matcher import pick_label
        assert pick_label([]) == "ROOM"

    def test_multi_word_beats_single_word(self):
        from app.services.label_matcher import pick_label
        assert pick_label(["LOBBY", "FIRE LOBBY"]) == "FIRE LOBBY"

    def test_underscore_joined_rewarded(self):
        from app.services.label_matcher import score_label
        assert score_label("MAID_ROOM") > score_label("MAIDROOM")

    def test_cad_tags_heavily_penalised(self):
        from app.services.label_matcher import score_label
        assert score_label("DT01") == -50
        assert score_label("DS") == -50
        assert score_label("L12-") == -50
        assert score_label("42") == -100

    def test_tie_goes_to_longer_then_first(self):
        from app.services.label_matcher import pick_label, score_label
        assert score_label("STORE") == score_label("STUDY")
        assert pick_label(["STORE", "STUDY"]) == "STORE"
        assert score_label("LOUNGE") == score_label("STORE")
        assert pick_label(["STORE", "LOUNGE"]) == "LOUNGE"

    def test_numeric_never_beats_alphabetic_words(self):
        from app.services.label_matcher import pick_label
        for noise in ["1", "3.75", "2024", "AZ451", "DT3", "X1"]:
            assert pick_label([noise, "GUEST ROOM"]) == "GUEST ROOM"


# ===========================================================================
# Class 2: Matching
# ===========================================================================

class TestMatchLabelsToRooms:
    """Tests for match_labels_to_rooms."""

    def test_strict_pass_collects_all_inside(self):
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms(
            [_text("12.00", 2, 1), _text("BEDROOM", 2, 2), _text("AZ451", 1, 1)],
            _candidates(rect(0, 0, 4, 3)),
            factor=1.0,
        )
        assert len(rooms) == 1
        assert rooms[0].label == "BEDROOM"
        assert rooms[0].label_candidates == ("12.00", "BEDROOM", "AZ451")
        assert rooms[0].area == 12.0

    def test_room_without_text_gets_placeholder(self):
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms([], _candidates(rect(0, 0, 4, 3)), factor=1.0)
        assert rooms[0].label == "ROOM"
        assert rooms[0].label_candidates == ()

    def test_tolerance_pass_rescues_label_just_outside(self):
        """Revit-style anchor 150 mm outside the boundary is still assigned."""
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms(
            [_text("OFFICE", 2000, 3150)],
            _candidates(rect(0, 0, 4000, 3000)),
            factor=1_000_000.0,
        )
        assert rooms[0].label == "OFFICE"
        assert rooms[0].area == 12.0

    def test_tolerance_pass_picks_nearest_polygon(self):
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms(
            [_text("STORE", 4100, 1500)],
            _candidates(rect(0, 0, 4000, 3000), rect(4300, 0, 4000, 3000)),
            factor=1_000_000.0,
        )
        assert rooms[0].label == "STORE"
        assert rooms[1].label == "ROOM"

    def test_text_beyond_tolerance_unassigned(self):
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms(
            [_text("STORE", 2000, 3600)],
            _candidates(rect(0, 0, 4000, 3000)),
            factor=1_000_000.0,
        )
        assert rooms[0].label == "ROOM"

    def test_small_rooms_dropped_after_conversion(self):
        """0.2 × 0.5 m = 0.1 m² < 0.2 m² minimum."""
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms(
            [_text("SHAFT", 100, 250)],
            _candidates(rect(0, 0, 200, 500), rect(1000, 0, 4000, 3000)),
            factor=1_000_000.0,
        )
        assert len(rooms) == 1
        assert rooms[0].area == 12.0

    def test_strict_match_not_reassigned_by_tolerance(self):
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms(
            [_text("KITCHEN", 3900, 1500)],
            _candidates(rect(0, 0, 4000, 3000), rect(4000, 0, 4000, 3000)),
            factor=1_000_000.0,
        )
        assert rooms[0].label == "KITCHEN"
        assert rooms[1].label == "ROOM"

    def test_ids_sequential_from_one(self):
        from app.services.label_matcher import match_labels_to_rooms
        rooms = match_labels_to_rooms(
            [], _candidates(rect(0, 0, 4, 3), rect(10, 0, 4, 3), rect(20, 0, 4, 3)), factor=1.0
        )
        assert [r.id for r in rooms] == [1, 2, 3]
