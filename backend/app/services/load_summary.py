"""
Building load summary: per-category roll-ups and building totals.

Rounding is applied at every step (per-room loads upstream, each category
sum, each grand total) and grand totals are summed from the rounded category
sums, so the breakdown always adds up to the headline figures.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.services.load_assembler import RoomLoadInput
from app.services.rounding import round2

logger = logging.getLogger("elc-summary")


@dataclass
class CategoryAggregate:
    category: str
    description: str
    room_count: int
    connected_load: float
    demand_load: float
    demand_factor: float            # unweighted mean over rooms
    coincident_factor: float        # unweighted mean over rooms
    load_density_va_m2: float       # from the category's first room
    loads_included: str
    ac_included: Optional[bool]

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "description": self.description,
            "roomCount": self.room_count,
            "connectedLoad": self.connected_load,
            "demandFactor": self.demand_factor,
            "coincidentFactor": self.coincident_factor,
            "demandLoad": self.demand_load,
            "loadDensity": self.load_density_va_m2,
            "loadsIncluded": self.loads_included,
            "acIncluded": self.ac_included,
        }


@dataclass
class BuildingSummary:
    total_connected_load: float = 0.0
    total_demand_load: float = 0.0
    total_demand_load_kva: float = 0.0
    effective_demand_factor: float = 0.0
    category_breakdown: list[CategoryAggregate] = field(default_factory=list)


@dataclass
class _CategoryAccumulator:
    first: RoomLoadInput
    connected_load: float = 0.0
    demand_load: float = 0.0
    room_count: int = 0
    demand_factor_sum: float = 0.0
    coincident_factor_sum: float = 0.0


def compute_building_summary(rooms: list[RoomLoadInput]) -> BuildingSummary:
    """Aggregate successfully assembled rooms by category and total them."""
    groups: dict[str, _CategoryAccumulator] = {}
    for room in rooms:
        acc = groups.get(room.customer_category)
        if acc is None:
            acc = groups[room.customer_category] = _CategoryAccumulator(first=room)
        acc.connected_load = round2(acc.connected_load + room.connected_load)
        acc.demand_load = round2(acc.demand_load + room.demand_load)
        acc.room_count += 1
        acc.demand_factor_sum += room.demand_factor
        acc.coincident_factor_sum += room.coincident_factor

    breakdown = [
        CategoryAggregate(
            category=code,
            description=acc.first.category_description,
            room_count=acc.room_count,
            connected_load=acc.connected_load,
            demand_load=acc.demand_load,
            demand_factor=round2(acc.demand_factor_sum / acc.room_count),
            coincident_factor=round2(acc.coincident_factor_sum / acc.room_count),
            load_density_va_m2=acc.first.load_density_va_m2,
            loads_included=acc.first.loads_included,
            ac_included=acc.first.ac_included,
        )
        for code, acc in sorted(groups.items())
    ]

    total_connected = 0.0
    total_demand = 0.0
    for cat in breakdown:
        total_connected = round2(total_connected + cat.connected_load)
        total_demand = round2(total_demand + cat.demand_load)

    summary = BuildingSummary(
        total_connected_load=total_connected,
        total_demand_load=total_demand,
        total_demand_load_kva=round2(total_demand / 1000),
        effective_demand_factor=total_demand / total_connected if total_connected > 0 else 0.0,
        category_breakdown=breakdown,
    )
    logger.info(
        f"Building summary: {len(breakdown)} categories, "
        f"{summary.total_connected_load} VA connected, {summary.total_demand_load} VA demand"
    )
    return summary
