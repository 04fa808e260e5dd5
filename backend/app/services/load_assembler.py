"""
Load Assembler: merges classifier decisions with room geometry.

For every category the classifier returns a uniform load density, so the
per-instance formula is the same everywhere:
  connected_load = load_density_va_m2 × area
  demand_load    = connected_load × demand_factor × coincident_factor

Each room instance is looked up by its OWN resolved label, never by the
aggregate's representative label. A miss is an expected outcome: the room is
still emitted, with null loads and an error string, and excluded from totals.
"""
import math
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.agents.config import CLASSIFICATION_FAILED_ERROR, DEFAULT_COINCIDENT_FACTOR
from app.models.classification import RoomClassification
from app.services.label_matcher import RawRoom
from app.services.room_aggregator import normalize_room_key
from app.services.rounding import round2

logger = logging.getLogger("elc-assembler")


@dataclass
class RoomLoadInput:
    """Successfully assembled room, reduced to what the building summary needs."""
    connected_load: float       # VA
    demand_load: float          # VA
    demand_factor: float        # 0–1
    coincident_factor: float    # 0–1
    customer_category: str      # e.g. "C1"
    category_description: str
    room_type: str
    load_density_va_m2: float
    loads_included: str
    ac_included: Optional[bool]


@dataclass
class AssembledRoom:
    id: int
    name: str                   # label as drawn (ditto marks preserved)
    resolved_label: str
    area: float
    type: str = "UNKNOWN"
    customer_category: str = ""
    category_description: str = ""
    load_density_va_m2: Optional[float] = None
    loads_included: Optional[str] = None
    ac_included: Optional[bool] = None
    connected_load: Optional[float] = None
    demand_factor: Optional[float] = None
    demand_load: Optional[float] = None
    code_reference: str = ""
    classification_reason: str = ""
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "resolvedLabel": self.resolved_label,
            "type": self.type,
            "customerCategory": self.customer_category,
            "categoryDescription": self.category_description,
            "area": self.area,
            "loadDensity": self.load_density_va_m2,
            "loadsIncluded": self.loads_included,
            "acIncluded": self.ac_included,
            "connectedLoad": self.connected_load,
            "demandFactor": self.demand_factor,
            "demandLoad": self.demand_load,
            "codeReference": self.code_reference,
            "classificationReason": self.classification_reason,
        }
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class AssembledLoads:
    rooms: list[AssembledRoom] = field(default_factory=list)
    room_load_inputs: list[RoomLoadInput] = field(default_factory=list)
    has_failed_rooms: bool = False


def coincident_factor_for_meters(meter_count: int) -> float:
    """
    Building diversity factor as a function of the number of kWh meters N:
        CF(N) = (0.67 + 0.33 / √N) / 1.25

    One meter gives 0.8; the factor tends to 0.536 as N grows.
    """
    if meter_count < 1:
        raise ValueError(f"meter_count must be >= 1, got {meter_count}")
    return (0.67 + 0.33 / math.sqrt(meter_count)) / 1.25


def index_classifications(classifications: list[RoomClassification]) -> dict[str, RoomClassification]:
    """Normalised label → classification. Later duplicates win, matching dict construction."""
    return {normalize_room_key(c.room_label): c for c in classifications}


def assemble_loads(
    raw_rooms: list[RawRoom],
    classifications: list[RoomClassification],
    resolved_labels: list[str],
    coincident_factor: float = DEFAULT_COINCIDENT_FACTOR,
) -> AssembledLoads:
    """Produce exactly one AssembledRoom per RawRoom, in input order."""
    if len(resolved_labels) != len(raw_rooms):
        raise ValueError(
            f"resolved_labels ({len(resolved_labels)}) must align with raw_rooms ({len(raw_rooms)})"
        )

    lookup = index_classifications(classifications)
    result = AssembledLoads()

    for raw, resolved in zip(raw_rooms, resolved_labels):
        match = lookup.get(normalize_room_key(resolved))

        if match is None:
            result.has_failed_rooms = True
            result.rooms.append(AssembledRoom(
                id=raw.id,
                name=raw.label,
                resolved_label=resolved,
                area=raw.area,
                error=CLASSIFICATION_FAILED_ERROR,
            ))
            continue

        connected_load = round2(match.load_density_va_m2 * raw.area)
        demand_load = round2(connected_load * match.demand_factor * coincident_factor)

        result.room_load_inputs.append(RoomLoadInput(
            connected_load=connected_load,
            demand_load=demand_load,
            demand_factor=match.demand_factor,
            coincident_factor=coincident_factor,
            customer_category=match.customer_category,
            category_description=match.category_description,
            room_type=match.room_type,
            load_density_va_m2=match.load_density_va_m2,
            loads_included=match.loads_included,
            ac_included=match.ac_included,
        ))
        result.rooms.append(AssembledRoom(
            id=raw.id,
            name=raw.label,
            resolved_label=resolved,
            area=raw.area,
            type=match.room_type,
            customer_category=match.customer_category,
            category_description=match.category_description,
            load_density_va_m2=match.load_density_va_m2,
            loads_included=match.loads_included,
            ac_included=match.ac_included,
            connected_load=connected_load,
            demand_factor=match.demand_factor,
            demand_load=demand_load,
            code_reference=match.code_reference,
            classification_reason=match.classification_reason,
        ))

    failed = sum(1 for r in result.rooms if r.failed)
    if failed:
        logger.warning(f"{failed}/{len(result.rooms)} rooms have no classification match")
    logger.info(f"Assembled loads for {len(result.room_load_inputs)} rooms (CF={coincident_factor:.4f})")
    return result
