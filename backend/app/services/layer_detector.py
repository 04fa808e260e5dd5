"""
Layer role detection for architectural DXF exports.

Classifies the drawing's layer table into boundary-holding layers,
label-holding layers and an annotation blacklist. Detection never narrows a
role to zero layers: no label match falls back to every non-annotation layer
(then to every layer), and no boundary match means "use all layers".
"""
import re
from dataclasses import dataclass, field

# Layers that carry closed room outlines
BOUNDARY_LAYER_PATTERNS = [
    re.compile(r'^boundary', re.IGNORECASE),
    re.compile(r'room.*bound', re.IGNORECASE),
    re.compile(r'area.*bound', re.IGNORECASE),
]

# Layers that carry room name labels
TEXT_LAYER_PATTERNS = [
    re.compile(r'area.*iden', re.IGNORECASE),
    re.compile(r'room.*name', re.IGNORECASE),
    re.compile(r'room.*label', re.IGNORECASE),
    re.compile(r'area.*name', re.IGNORECASE),
]

# Annotation / non-room layers whose text must never become a room label
ANNOTATION_LAYER_BLACKLIST = [
    re.compile(p, re.IGNORECASE) for p in (
        r'anno', r'symb', r'dim', r'note', r'tag', r'title', r'grid',
        r'hatch', r'patt', r'door', r'window', r'furn', r'fixt', r'case',
        r'glaz', r'sanr', r'detl', r'flor', r'wall', r'genf', r'thin',
        r'ceil', r'elec', r'mech', r'plmb', r'fire.*prot', r'legend',
    )
]


@dataclass
class LayerRoles:
    """Allowed layers per role. An empty list means every layer is allowed."""
    boundary: list[str] = field(default_factory=list)
    text: list[str] = field(default_factory=list)

    def allows_boundary(self, layer: str) -> bool:
        return is_on_layer(layer, self.boundary)

    def allows_text(self, layer: str) -> bool:
        return is_on_layer(layer, self.text)

    def to_dict(self) -> dict:
        return {"boundary": list(self.boundary), "text": list(self.text)}


def is_annotation_layer(layer_name: str) -> bool:
    return any(p.search(layer_name) for p in ANNOTATION_LAYER_BLACKLIST)


def is_on_layer(layer_name: str, allowed_layers: list[str]) -> bool:
    """Case-insensitive membership test on trimmed names."""
    if not allowed_layers:
        return True
    entity_layer = (layer_name or "").strip().casefold()
    return any(allowed.strip().casefold() == entity_layer for allowed in allowed_layers)


def detect_layers(all_layers: list[str]) -> LayerRoles:
    """Auto-detect which layers hold room boundaries and room labels."""
    boundary_layers = [
        name for name in all_layers
        if any(p.search(name) for p in BOUNDARY_LAYER_PATTERNS)
    ]
    text_layers = [
        name for name in all_layers
        if any(p.search(name) for p in TEXT_LAYER_PATTERNS)
    ]

    if not text_layers:
        text_layers = [name for name in all_layers if not is_annotation_layer(name)]
    if not text_layers:
        text_layers = list(all_layers)

    return LayerRoles(boundary=boundary_layers, text=text_layers)
