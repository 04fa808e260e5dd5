"""
Room aggregation: ditto resolution and per-type grouping.

Drawings often label repeated rooms with a ditto mark (" or “ ”) meaning
"same as the room above". Those are resolved to the nearest preceding named
label, then rooms are grouped by normalised label so the classifier sees each
room type once, together with the total floor area of that type (some DPS-01
categories are priced on total area, not per instance).
"""
import re
import logging
from dataclasses import dataclass, field

from app.services.label_matcher import RawRoom
from app.services.rounding import round2

logger = logging.getLogger("elc-aggregator")

# Straight and curly double / single quotes used as ditto marks
DITTO_RE = re.compile(r'^["\'“”‘’]+$')


@dataclass
class UniqueRoomInput:
    name: str                       # representative (first seen) resolved label
    area: float                     # representative instance area, m²
    total_area_for_type: float      # sum over every instance, m²
    room_count: int
    label_candidates: list[str] = field(default_factory=list)

    def to_prompt_dict(self) -> dict:
        return {
            "name": self.name,
            "representativeArea": self.area,
            "totalAreaForType": self.total_area_for_type,
            "instanceCount": self.room_count,
            "labelCandidates": list(self.label_candidates),
        }


@dataclass
class AggregateResult:
    resolved_labels: list[str]              # index-aligned with the input rooms
    unique_rooms: list[UniqueRoomInput]


def normalize_room_key(label: str) -> str:
    """Stable lookup key used for grouping and classification matching."""
    return label.upper().strip()


def is_ditto(label: str) -> bool:
    return bool(DITTO_RE.match(label.strip()))


def resolve_ditto_labels(labels: list[str]) -> list[str]:
    """
    Replace each ditto mark with the nearest preceding non-ditto label.

    Chained dittos resolve to the same ancestor. A ditto with no named
    predecessor keeps its own mark.
    """
    resolved: list[str] = []
    last_named: str | None = None
    for label in labels:
        if is_ditto(label):
            resolved.append(last_named if last_named is not None else label)
        else:
            last_named = label
            resolved.append(label)
    return resolved


def aggregate_rooms(raw_rooms: list[RawRoom]) -> AggregateResult:
    """Resolve dittos then group rooms by normalised label. Does not mutate raw_rooms."""
    resolved_labels = resolve_ditto_labels([room.label for room in raw_rooms])

    groups: dict[str, UniqueRoomInput] = {}
    for room, label in zip(raw_rooms, resolved_labels):
        key = normalize_room_key(label)
        existing = groups.get(key)
        if existing is None:
            groups[key] = UniqueRoomInput(
                name=label,
                area=room.area,
                total_area_for_type=room.area,
                room_count=1,
                label_candidates=list(room.label_candidates),
            )
            continue
        existing.total_area_for_type = round2(existing.total_area_for_type + room.area)
        existing.room_count += 1
        for candidate in room.label_candidates:
            if candidate not in existing.label_candidates:
                existing.label_candidates.append(candidate)

    unique_rooms = list(groups.values())
    logger.info(f"Aggregated {len(raw_rooms)} rooms into {len(unique_rooms)} room types")
    return AggregateResult(resolved_labels=resolved_labels, unique_rooms=unique_rooms)
