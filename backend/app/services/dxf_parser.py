"""
DXF Entity Extractor for Room Load Estimation

Reads raw DXF text (already validated by the upload boundary) and produces
typed entities in a single modelspace pass:
- TextEntity    : cleaned, uppercased room labels with insertion points
- BoundaryEntity: vertex lists of LWPOLYLINE / legacy POLYLINE outlines

Layer roles are detected from the layer table (see layer_detector) and used
to drop annotation text and non-boundary polylines. Bulge factors are read as
straight chords (2-5% area error on architectural arcs).

Dependencies:
  - ezdxf (required)
"""
import io
import re
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

import ezdxf

from app.services.errors import DxfParseError
from app.services.layer_detector import LayerRoles, detect_layers

logger = logging.getLogger("elc-dxf-parser")

Point = tuple[float, float]

# MTEXT formatting: \P paragraph breaks, \fArial|b0;  \H2.5;  \A1; ... and grouping braces
_PARAGRAPH_RE = re.compile(r'\\P', re.IGNORECASE)
_FORMAT_CODE_RE = re.compile(r'\\[a-zA-Z][^;]*;')
_BRACES_RE = re.compile(r'[{}]')


# ── Entities ──────────────────────────────────────────────────────────────────

@dataclass
class TextEntity:
    content: str
    insertion_point: Point
    layer: str = ""


@dataclass
class BoundaryEntity:
    vertices: list[Point]
    layer: str = ""
    is_mesh: bool = False
    source: str = "LWPOLYLINE"  # "LWPOLYLINE" or "POLYLINE"


Entity = Union[TextEntity, BoundaryEntity]


@dataclass
class ParsedDxf:
    insunits: Optional[int]
    layers_used: LayerRoles
    texts: list[TextEntity] = field(default_factory=list)
    lw_polyline_verts: list[list[Point]] = field(default_factory=list)
    legacy_polyline_verts: list[list[Point]] = field(default_factory=list)


# ── Helpers ───────────────────────────────────────────────────────────────────

def clean_text(raw: str) -> str:
    """Strip DXF formatting codes and normalise to upper-case."""
    if not raw:
        return ""
    cleaned = _PARAGRAPH_RE.sub("", raw)
    cleaned = _FORMAT_CODE_RE.sub("", cleaned)
    cleaned = _BRACES_RE.sub("", cleaned)
    return cleaned.strip().upper()


def _read_document(content: str):
    try:
        return ezdxf.read(io.StringIO(content))
    except Exception as e:
        raise DxfParseError(f"Invalid DXF file: {e}") from e


def _read_insunits(doc) -> Optional[int]:
    try:
        value = doc.header.get("$INSUNITS")
    except Exception:
        return None
    return value if isinstance(value, int) else None


def _layer_names(doc) -> list[str]:
    try:
        return [layer.dxf.name for layer in doc.layers]
    except Exception as e:
        logger.debug(f"Could not enumerate layer table: {e}")
        return []


def _text_entity(entity) -> Optional[TextEntity]:
    if entity.dxftype() == "MTEXT":
        raw = entity.text
    else:
        raw = entity.dxf.text
    content = clean_text(raw)
    if not content or not entity.dxf.hasattr("insert"):
        return None
    ins = entity.dxf.insert
    return TextEntity(content=content, insertion_point=(ins.x, ins.y), layer=entity.dxf.layer)


def _boundary_entity(entity) -> BoundaryEntity:
    if entity.dxftype() == "LWPOLYLINE":
        vertices = [(p[0], p[1]) for p in entity.get_points("xy")]
        return BoundaryEntity(vertices=vertices, layer=entity.dxf.layer)

    vertices = [(v.dxf.location.x, v.dxf.location.y) for v in entity.vertices]
    return BoundaryEntity(
        vertices=vertices,
        layer=entity.dxf.layer,
        is_mesh=entity.is_poly_face_mesh or entity.is_polygon_mesh,
        source="POLYLINE",
    )


def iter_entities(doc) -> Iterator[Entity]:
    """Yield typed entities from modelspace in file order. Malformed entities are skipped."""
    for entity in doc.modelspace():
        dxf_type = entity.dxftype()
        try:
            if dxf_type in ("TEXT", "MTEXT"):
                text = _text_entity(entity)
                if text is not None:
                    yield text
            elif dxf_type in ("LWPOLYLINE", "POLYLINE"):
                yield _boundary_entity(entity)
        except Exception as e:
            logger.debug(f"Skipping malformed {dxf_type}: {e}")


# ── Public API ────────────────────────────────────────────────────────────────

def parse_dxf_content(content: str) -> ParsedDxf:
    """
    Parse DXF text and split its entities by role.

    Raises:
        DxfParseError: content is not a readable DXF document.
    """
    doc = _read_document(content)
    layers_used = detect_layers(_layer_names(doc))
    parsed = ParsedDxf(insunits=_read_insunits(doc), layers_used=layers_used)

    skipped_meshes = 0
    for entity in iter_entities(doc):
        if isinstance(entity, TextEntity):
            if layers_used.allows_text(entity.layer):
                parsed.texts.append(entity)
        elif isinstance(entity, BoundaryEntity):
            if entity.is_mesh:
                skipped_meshes += 1
                continue
            if not layers_used.allows_boundary(entity.layer):
                continue
            if entity.source == "POLYLINE":
                parsed.legacy_polyline_verts.append(entity.vertices)
            else:
                parsed.lw_polyline_verts.append(entity.vertices)

    logger.info(
        f"DXF parsed: {len(parsed.texts)} labels, "
        f"{len(parsed.lw_polyline_verts)} LWPOLYLINE + "
        f"{len(parsed.legacy_polyline_verts)} POLYLINE boundaries"
        + (f" ({skipped_meshes} meshes skipped)" if skipped_meshes else "")
    )
    return parsed
