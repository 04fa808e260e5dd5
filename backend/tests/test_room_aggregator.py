"""
test_room_aggregator.py: Unit tests for ditto resolution and room-type grouping.
"""

import pytest


def _room(id_, label, area, candidates=None):
    from app.services.label_matcher import RawRoom
    return RawRoom(id=id_, label=label, area=area, label_candidates=tuple(candidates or [label]))


class TestDittoResolution:
    """Tests for is_ditto / resolve_ditto_labels."""

    def test_chain_resolves_to_same_ancestor(self):
        from app.services.room_aggregator import resolve_ditto_labels
        assert resolve_ditto_labels(["LOUNGE", '"', '"']) == ["LOUNGE", "LOUNGE", "LOUNGE"]

    def test_lone_ditto_keeps_its_mark(self):
        from app.services.room_aggregator import resolve_ditto_labels
        assert resolve_ditto_labels(['"', "KITCHEN"]) == ['"', "KITCHEN"]

    def test_ditto_uses_nearest_preceding_name(self):
        from app.services.room_aggregator import resolve_ditto_labels
        labels = ["BEDROOM", '"', "BATH", "''"]
        assert resolve_ditto_labels(labels) == ["BEDROOM", "BEDROOM", "BATH", "BATH"]

    @pytest.mark.parametrize("mark", ['"', "'", "''", "“", "”", "“”", "’", ' " '])
    def test_quote_variants_are_dittos(self, mark):
        from app.services.room_aggregator import is_ditto
        assert is_ditto(mark)

    @pytest.mark.parametrize("label", ["", "ROOM", '"A"', "DITTO", "-"])
    def test_non_dittos(self, label):
        from app.services.room_aggregator import is_ditto
        assert not is_ditto(label)


class TestAggregateRooms:
    """Tests for aggregate_rooms."""

    def test_same_label_merged_with_total_area(self):
        """Two 'Bedroom' rooms, 15 + 12 m² → one input, total 27, count 2."""
        from app.services.room_aggregator import aggregate_rooms
        result = aggregate_rooms([_room(1, "Bedroom", 15.0), _room(2, "Bedroom", 12.0)])
        assert len(result.unique_rooms) == 1
        bedroom = result.unique_rooms[0]
        assert bedroom.total_area_for_type == 27.0
        assert bedroom.room_count == 2
        assert bedroom.area == 15.0

    def test_grouping_is_case_and_whitespace_insensitive(self):
        from app.services.room_aggregator import aggregate_rooms
        result = aggregate_rooms([_room(1, "Bedroom", 10.0), _room(2, " BEDROOM ", 10.0)])
        assert len(result.unique_rooms) == 1
        assert result.unique_rooms[0].name == "Bedroom"

    def test_ditto_rooms_join_their_ancestor_group(self):
        from app.services.room_aggregator import aggregate_rooms
        rooms = [_room(1, "LOUNGE", 20.0), _room(2, '"', 18.5), _room(3, "KITCHEN", 9.0)]
        result = aggregate_rooms(rooms)
        assert result.resolved_labels == ["LOUNGE", "LOUNGE", "KITCHEN"]
        lounge = next(u for u in result.unique_rooms if u.name == "LOUNGE")
        assert lounge.total_area_for_type == 38.5
        assert lounge.room_count == 2

    def test_first_seen_order_and_representative(self):
        from app.services.room_aggregator import aggregate_rooms
        rooms = [_room(1, "KITCHEN", 9.0), _room(2, "BEDROOM", 12.0), _room(3, "KITCHEN", 8.0)]
        result = aggregate_rooms(rooms)
        assert [u.name for u in result.unique_rooms] == ["KITCHEN", "BEDROOM"]
        assert result.unique_rooms[0].area == 9.0

    def test_label_candidates_merged_without_duplicates(self):
        from app.services.room_aggregator import aggregate_rooms
        rooms = [
            _room(1, "OFFICE", 10.0, ["OFFICE", "AZ451"]),
            _room(2, "OFFICE", 10.0, ["OFFICE", "12.00"]),
        ]
        result = aggregate_rooms(rooms)
        assert result.unique_rooms[0].label_candidates == ["OFFICE", "AZ451", "12.00"]

    def test_input_not_mutated(self):
        from app.services.room_aggregator import aggregate_rooms
        rooms = [_room(1, "LOUNGE", 20.0), _room(2, '"', 18.0)]
        aggregate_rooms(rooms)
        assert rooms[1].label == '"'

    def test_total_area_is_two_decimal(self):
        from app.services.room_aggregator import aggregate_rooms
        result = aggregate_rooms([_room(1, "WC", 0.1), _room(2, "WC", 0.2)])
        assert result.unique_rooms[0].total_area_for_type == 0.3

    def test_prompt_dict_shape(self):
        from app.services.room_aggregator import aggregate_rooms
        result = aggregate_rooms([_room(1, "WC", 2.5)])
        assert result.unique_rooms[0].to_prompt_dict() == {
            "name": "WC",
            "representativeArea": 2.5,
            "totalAreaForType": 2.5,
            "instanceCount": 1,
            "labelCandidates": ["WC"],
        }
