"""
Room polygon construction from raw boundary vertex lists.

Closes rings, computes unsigned area (clockwise and counter-clockwise
windings are both valid), collapses duplicate boundaries emitted on several
layers / entity types, and infers the drawing unit once per file.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from shapely.geometry import Polygon

from app.agents.config import (
    DEDUP_PRECISION,
    INSUNITS_MILLIMETERS,
    MIN_ROOM_AREA_M2,
    MM_AREA_THRESHOLD,
    MM_TO_M2_FACTOR,
    UNIT_SAMPLE_SIZE,
    UNITS_METERS_LABEL,
    UNITS_MILLIMETERS_LABEL,
)
from app.services.perf_monitor import timed
from app.services.rounding import round_half_up

logger = logging.getLogger("elc-polygons")

Point = tuple[float, float]


@dataclass
class PolygonCandidate:
    ring: list[Point]                           # always closed: ring[0] == ring[-1]
    raw_area: float                             # drawing units², never negative
    bbox: tuple[float, float, float, float]     # (min_x, min_y, max_x, max_y)
    polygon: Polygon

    def dedup_key(self) -> tuple:
        """Bounding box + area rounded to 0.1 unit; absorbs export noise."""
        return tuple(round_half_up(v, DEDUP_PRECISION) for v in (*self.bbox, self.raw_area))


@dataclass
class UnitDetection:
    factor: float       # divide raw areas by this to get m²
    detected: str       # human-readable description for the report
    unit: str           # "meters" or "millimeters"


def _bbox_area(verts: list[Point]) -> float:
    xs = [v[0] for v in verts]
    ys = [v[1] for v in verts]
    return (max(xs) - min(xs)) * (max(ys) - min(ys))


def build_polygon(verts: list[Point]) -> Optional[PolygonCandidate]:
    """Close the ring if needed and compute its unsigned area. None below 3 vertices."""
    if len(verts) < 3:
        return None

    ring = [(float(x), float(y)) for x, y in verts]
    if ring[0] != ring[-1]:
        ring.append(ring[0])

    polygon = Polygon(ring)
    return PolygonCandidate(
        ring=ring,
        raw_area=abs(polygon.area),
        bbox=tuple(polygon.bounds),
        polygon=polygon,
    )


def detect_units(candidates: list[PolygonCandidate], insunits: Optional[int] = None) -> UnitDetection:
    """
    Decide once per file whether coordinates are millimetres.

    Samples the first few significant polygons (raw area > 1 unit²); an average
    above MM_AREA_THRESHOLD, or an explicit $INSUNITS of millimetres, switches
    every area in the file to mm² → m².
    """
    samples = [c.raw_area for c in candidates if c.raw_area > 1][:UNIT_SAMPLE_SIZE]
    if not samples:
        return UnitDetection(factor=1.0, detected=UNITS_METERS_LABEL, unit="meters")

    avg = sum(samples) / len(samples)
    if avg > MM_AREA_THRESHOLD or insunits == INSUNITS_MILLIMETERS:
        return UnitDetection(factor=MM_TO_M2_FACTOR, detected=UNITS_MILLIMETERS_LABEL, unit="millimeters")
    return UnitDetection(factor=1.0, detected=UNITS_METERS_LABEL, unit="meters")


@timed
def build_room_polygons(
    lw_polyline_verts: list[list[Point]],
    legacy_polyline_verts: list[list[Point]],
) -> list[PolygonCandidate]:
    """
    Build and deduplicate candidate room polygons.

    LWPOLYLINE outlines are processed first so that a boundary exported on both
    entity types collapses to the LWPOLYLINE copy.
    """
    built: list[PolygonCandidate] = []
    skipped_small = 0

    for verts in [*lw_polyline_verts, *legacy_polyline_verts]:
        if len(verts) >= 3 and _bbox_area(verts) < MIN_ROOM_AREA_M2:
            skipped_small += 1
            continue
        try:
            candidate = build_polygon(verts)
        except Exception as e:
            logger.debug(f"Skipping malformed polyline ({len(verts)} vertices): {e}")
            continue
        if candidate is not None:
            built.append(candidate)

    seen: set[tuple] = set()
    unique: list[PolygonCandidate] = []
    for candidate in built:
        key = candidate.dedup_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)

    logger.info(
        f"Polygons: {len(unique)} unique of {len(built)} built "
        f"({skipped_small} below bbox pre-filter, {len(built) - len(unique)} duplicates)"
    )
    return unique
