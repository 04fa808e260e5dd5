"""
Text label → room polygon matching.

Pass 1 assigns every label whose insertion point lies strictly inside an
accepted polygon. Pass 2 rescues labels left over (exporters such as Revit
often anchor text fractionally outside the boundary) by snapping each to the
nearest polygon edge within TEXT_MATCH_TOLERANCE drawing units.

The chosen label per room comes from a structural scoring heuristic with no
room-name vocabulary; every candidate is kept so the classifier sees them all.
"""
import re
import logging
from dataclasses import dataclass

from shapely.geometry import Point
from shapely.prepared import prep

from app.agents.config import DEFAULT_ROOM_LABEL, MIN_ROOM_AREA_M2, TEXT_MATCH_TOLERANCE
from app.services.dxf_parser import TextEntity
from app.services.perf_monitor import timed
from app.services.polygon_builder import PolygonCandidate
from app.services.rounding import round2

logger = logging.getLogger("elc-label-matcher")

_NUMERIC_RE = re.compile(r'^\d+(\.\d+)?$')
_CAD_TAG_RE = re.compile(r'^(L\d+-|DT\d*|DS\d*)$', re.IGNORECASE)
_SHEET_CODE_RE = re.compile(r'^[A-Z]{1,2}\d{2,}$', re.IGNORECASE)   # AZ451, R306, BK102
_ALPHA_NAME_RE = re.compile(r'^[A-Z][A-Z_ .]+$', re.IGNORECASE)
_WHITESPACE_RE = re.compile(r'\s')


@dataclass(frozen=True)
class RawRoom:
    id: int                             # 1-based sequence in polygon order
    label: str                          # chosen label (cleaned, uppercase)
    area: float                         # m², 2-decimal
    label_candidates: tuple[str, ...]   # every text matched to this polygon


def score_label(text: str) -> int:
    """Higher is more room-name-like. Pure function of the string."""
    if _NUMERIC_RE.match(text):
        return -100     # area values, door numbers
    if _CAD_TAG_RE.match(text):
        return -50      # door tags, level markers

    score = 0
    if len(text) <= 2:
        score -= 10
    if _SHEET_CODE_RE.match(text):
        score -= 15
    if _WHITESPACE_RE.search(text) or "_" in text:
        score += 5      # "FIRE LOBBY", "MAID_ROOM"
    if _ALPHA_NAME_RE.match(text):
        score += 3
    if len(text) >= 4:
        score += 2
    if len(text) >= 8:
        score += 1
    return score


def pick_label(candidates: list[str]) -> str:
    """
    Choose the best label among the texts found for one polygon.

    Highest score wins; ties go to the longer string, then to the earlier
    candidate. No candidates → DEFAULT_ROOM_LABEL.
    """
    if not candidates:
        return DEFAULT_ROOM_LABEL
    return max(candidates, key=lambda text: (score_label(text), len(text)))


def _outside_expanded_bbox(x: float, y: float, bbox: tuple, margin: float) -> bool:
    min_x, min_y, max_x, max_y = bbox
    return x < min_x - margin or x > max_x + margin or y < min_y - margin or y > max_y + margin


@timed
def match_labels_to_rooms(
    texts: list[TextEntity],
    candidates: list[PolygonCandidate],
    factor: float,
    min_room_area: float = MIN_ROOM_AREA_M2,
    tolerance: float = TEXT_MATCH_TOLERANCE,
) -> list[RawRoom]:
    """
    Turn candidate polygons into RawRooms with their labels.

    `factor` divides raw areas into m²; polygons below `min_room_area` m² are
    dropped before any label is considered. `tolerance` is in drawing units.
    """
    points = [Point(*t.insertion_point) for t in texts]
    matched = [False] * len(texts)

    accepted: list[tuple[PolygonCandidate, float, list[str]]] = []
    for candidate in candidates:
        area = round2(candidate.raw_area / factor)
        if area < min_room_area:
            continue

        prepared = prep(candidate.polygon)
        labels: list[str] = []
        for i, text in enumerate(texts):
            if prepared.contains(points[i]):
                labels.append(text.content)
                matched[i] = True
        accepted.append((candidate, area, labels))

    rescued = 0
    for i, text in enumerate(texts):
        if matched[i]:
            continue
        x, y = text.insertion_point
        best_idx = None
        best_dist = tolerance
        for idx, (candidate, _, _) in enumerate(accepted):
            if _outside_expanded_bbox(x, y, candidate.bbox, tolerance):
                continue
            dist = candidate.polygon.exterior.distance(points[i])
            if dist < best_dist:
                best_dist = dist
                best_idx = idx
        if best_idx is not None:
            accepted[best_idx][2].append(text.content)
            matched[i] = True
            rescued += 1

    rooms = [
        RawRoom(id=n, label=pick_label(labels), area=area, label_candidates=tuple(labels))
        for n, (_, area, labels) in enumerate(accepted, start=1)
    ]
    logger.info(
        f"Label matching: {len(rooms)} rooms, "
        f"{sum(matched)}/{len(texts)} labels assigned ({rescued} by tolerance)"
    )
    return rooms
