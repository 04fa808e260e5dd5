"""
Room Classifier: single-pass DPS-01 classification and load value extraction.

One LLM call per drawing: every unique room type is listed together so the
model can make a building-level decision (the customer category is the
building's primary use, with C11 for shared and circulation spaces), and for
each room it returns the category plus the load density, demand factor and
loads-included text taken from the retrieved DPS-01 sections.

For C1 / C2 the area→kVA table interpolation is done by the model using the
total area for the room type; the returned density is uniform VA/m² for every
category, so downstream arithmetic has no special cases.

Output is JSON mode → pydantic. Individual malformed records are dropped;
an unusable payload raises ClassificationError.
"""
import json
import re
import logging
from typing import Optional

from pydantic import ValidationError

from app.agents.config import CLASSIFIER_MAX_TOKENS, CLASSIFIER_TEMPERATURE
from app.models.classification import ClassificationResponse, RoomClassification
from app.services.errors import ClassificationError
from app.services.llm_client import LLMClient, get_system_prompt
from app.services.perf_monitor import timed_async
from app.services.room_aggregator import UniqueRoomInput

logger = logging.getLogger("elc-classifier")

_FENCE_RE = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL | re.IGNORECASE)

_RULE = "═" * 62

# DPS-01 Table 2 customer categories
CUSTOMER_CATEGORIES: dict[str, str] = {
    "C1": "Normal Residential Dwelling (villas, houses, apartments, one kWh meter per unit)",
    "C2": "Normal Commercial Shops (retail units, pharmacies, small offices, one meter each)",
    "C3": "Furnished Flats / Serviced Apartments",
    "C4": "Hotels and Motels",
    "C5": "Hospitals and Medical Centres",
    "C6": "Schools, Colleges and Educational Institutes",
    "C7": "Offices (corporate, private, government administration)",
    "C8": "Banks and Financial Institutions",
    "C9": "Government and Public Buildings",
    "C10": "Restaurants, Cafes and Food Service",
    "C11": "Common Areas and Services in Buildings (corridors, lobbies, stairs, lifts, plant rooms, shared WCs)",
    "C12": "Supermarkets and Shopping Centres",
    "C13": "Indoor Car Parks and Garages",
    "C14": "Outdoor Car Parks and Petrol / Service Stations",
    "C15": "Car Showrooms and Automobile Dealerships",
    "C16": "Wedding Halls, Ballrooms and Social Clubs",
    "C17": "Sports Facilities, Gyms and Recreation Centres",
    "C18": "Warehouses and Storage Facilities (Declared Load Method)",
    "C19": "Light Industrial / Workshops (Declared Load Method)",
    "C20": "Heavy Industrial (Declared Load Method)",
    "C21": "Mosques and Places of Worship",
    "C22": "Exhibition Centres and Conference Halls",
    "C23": "Cinemas, Theatres and Entertainment Venues",
    "C24": "Nurseries and Kindergartens",
    "C25": "Libraries and Cultural Centres",
    "C26": "Laundry and Dry-Cleaning Facilities",
    "C27": "Laboratories and Research Centres",
    "C28": "Fire Stations, Civil Defence and Emergency Services",
    "C29": "Mixed-Use Facilities (two or more uses sharing one meter)",
}

ARABIC_LABELS: dict[str, str] = {
    "غرفة نوم": "Bedroom",
    "صالة / معيشة": "Living Room",
    "مطبخ": "Kitchen",
    "حمام / دورة مياه": "Bathroom",
    "ممر / مدخل": "Corridor / Entrance",
    "درج / سلم": "Staircase",
    "مصعد": "Lift",
    "مكتب": "Office",
    "متجر / محل": "Shop",
    "مصلى": "Prayer Room",
    "مخزن": "Store Room",
    "غرفة خادمة": "Maid Room",
    "قاعة": "Hall / Meeting Room",
}

_RESPONSE_SHAPE = """{
  "rooms": [
    {
      "room_label": "<label exactly as listed>",
      "room_type": "<English room type>",
      "customer_category": "C1".."C29",
      "category_description": "<Table 2 description>",
      "load_density_va_m2": <number, VA/m²>,
      "demand_factor": <number 0-1>,
      "loads_included": "<loads covered by the density>",
      "ac_included": <true|false|null>,
      "code_reference": "<DPS-01 table / section>",
      "classification_reason": "<one sentence>"
    }
  ]
}"""


# ── Prompt ────────────────────────────────────────────────────────────────────

def format_room_line(index: int, room: UniqueRoomInput) -> str:
    line = f'{index}. "{room.name}"'
    if len(room.label_candidates) > 1:
        quoted = ", ".join(f'"{label}"' for label in room.label_candidates)
        line += f" (all text inside boundary: {quoted})"
    if room.room_count > 1:
        line += f" x{room.room_count} rooms"
    line += f" | this instance: {room.area:.2f} m² | TOTAL AREA FOR TYPE: {room.total_area_for_type:.2f} m²"
    return line


def build_classification_prompt(
    rooms: list[UniqueRoomInput],
    code_context: str,
    include_ac: bool,
    focus_categories: Optional[list[str]] = None,
) -> str:
    """Full user prompt for one classification round trip."""
    categories_block = "\n".join(f"{code:<4} {desc}" for code, desc in CUSTOMER_CATEGORIES.items())
    arabic_block = "\n".join(f"  {ar} → {en}" for ar, en in ARABIC_LABELS.items())
    rooms_block = "\n".join(format_room_line(i, room) for i, room in enumerate(rooms, start=1))

    if include_ac:
        ac_preference = "true: include A/C loads, use Table 8 (three-phase L-L 400V)"
        density_rule = "Use Table 8 (three-phase L-L 400V), which covers lights, A/C and power sockets."
    else:
        ac_preference = "false: lights and sockets only, where an A/C-free figure exists"
        density_rule = (
            "Use a figure that excludes A/C (not Table 8). If none exists, use the standard "
            "figure and say so in loads_included."
        )

    context = code_context.strip() or (
        "NO SECTIONS RETRIEVED. Rely on the Table 2 definitions for the category, "
        "set every load value to 0 and write 'Not found in retrieved sections' in code_reference."
    )

    focus = ""
    if focus_categories:
        focus = (
            f"\nRE-CHECK: a previous pass returned a zero load density for categories "
            f"{', '.join(focus_categories)}. Search the sections below specifically for their densities.\n"
        )

    return f"""Classify each room below to its DPS-01 customer category AND extract its load values.

AC_PREFERENCE = {ac_preference}
{focus}
{_RULE}
DPS-01 TABLE 2: CUSTOMER CATEGORIES
{_RULE}
{categories_block}

{_RULE}
CLASSIFICATION RULES
{_RULE}
1. Building-level decision: read the whole room list. The category is the building's
   primary use and applies to every room of that use. Circulation and service spaces
   (corridor, lobby, stairs, lift, plant / electrical / pump room, shared WC, bin room)
   are ALWAYS C11, whatever the building type.
2. Labels may be Arabic, abbreviated or coded. Use every text found inside the boundary
   and the room area. Ignore sheet references (AZ451), door tags (DT01) and dimensions.
{arabic_block}
3. Mixed-use drawings (e.g. shops below, flats above): classify each zone on its own.
4. For C18 to C29 append to code_reference:
   "Declared Load Method required, area-based density not applicable (DPS-01 Section 20)"

{_RULE}
LOAD VALUES
{_RULE}
load_density_va_m2: {density_rule}
  C1 / C2 are priced from area→kVA tables (C1 Table 4, C2 Table 6, three-phase L-L 400V).
  Interpolate linearly between the rows bracketing TOTAL AREA FOR TYPE (beyond the table,
  use the extended VA/m² formula), then return kVA × 1000 / TOTAL AREA FOR TYPE.
  C11 densities may sit outside the main grid: look for common area, shared services,
  corridor or emergency lighting densities. If truly absent return 0.
  C18 to C29 (declared load): return 0.
demand_factor: the single Table 11 value for the category, as a fraction (60% → 0.60).
  If not found return 1.0.
loads_included: copy the table header or footnote wording.

{_RULE}
DPS-01 CODE SECTIONS (retrieved)
{_RULE}
{context}

{_RULE}
ROOMS FROM DXF DRAWING
{_RULE}
{rooms_block}

STRICT RULES:
- Take values ONLY from the retrieved sections; never guess.
- Missing value: numeric field 0 and "Not found in retrieved sections" in code_reference.
- Demand factors must be within 0 to 1.
- Return exactly {len(rooms)} entries, one per room label above, with room_label copied verbatim.

Respond with JSON of this shape:
{_RESPONSE_SHAPE}"""


# ── Response parsing ──────────────────────────────────────────────────────────

def parse_classification_response(raw: str) -> list[RoomClassification]:
    """
    Parse the model's JSON into validated records.

    Accepts ```json fenced output and a bare top-level list. Records that fail
    validation are logged and dropped.

    Raises:
        ClassificationError: the payload is not JSON or has no room list.
    """
    text = (raw or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ClassificationError(f"Classifier returned invalid JSON: {e}") from e

    if isinstance(parsed, list):
        parsed = {"rooms": parsed}
    try:
        payload = ClassificationResponse.model_validate(parsed)
    except ValidationError as e:
        raise ClassificationError(f"Classifier payload has no room list: {e}") from e

    records: list[RoomClassification] = []
    for item in payload.rooms:
        try:
            records.append(RoomClassification.model_validate(item))
        except ValidationError as e:
            label = item.get("room_label") if isinstance(item, dict) else None
            logger.warning(f"Dropping malformed classification record {label!r}: {e.error_count()} errors")
    return records


# ── Service ───────────────────────────────────────────────────────────────────

class RoomClassifier:
    """LLM-backed classification service. `llm` only needs an async chat()."""

    def __init__(self, llm: Optional[LLMClient] = None):
        self._llm = llm or LLMClient()

    @timed_async
    async def classify(
        self,
        rooms: list[UniqueRoomInput],
        code_context: str,
        include_ac: bool,
        focus_categories: Optional[list[str]] = None,
    ) -> list[RoomClassification]:
        """
        Classify every unique room type in one call.

        Raises:
            ClassificationError: provider failure or unusable payload.
        """
        if not rooms:
            return []

        prompt = build_classification_prompt(rooms, code_context, include_ac, focus_categories)
        try:
            raw = await self._llm.chat(
                messages=[
                    {"role": "system", "content": get_system_prompt("load_engineer")},
                    {"role": "user", "content": prompt},
                ],
                temperature=CLASSIFIER_TEMPERATURE,
                json_mode=True,
                max_tokens=CLASSIFIER_MAX_TOKENS,
            )
        except Exception as e:
            raise ClassificationError(f"Classifier call failed: {e}") from e

        records = parse_classification_response(raw)
        logger.info(f"Classifier returned {len(records)}/{len(rooms)} room classifications")
        return records
