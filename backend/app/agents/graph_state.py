"""
LangGraph State definition for the load estimation pipeline.

All graph nodes read and write this TypedDict. Nothing is checkpointed: a run
lives for one upload, and collaborators ride along in the state so tests can
inject fakes per run.
"""
from typing import Any, Callable, TypedDict, Optional, List


class LoadEstimationState(TypedDict, total=False):
    # ── Identity / workflow ───────────────────────────────────────────────────
    run_id: str
    current_node: str
    progress_pct: int                       # 0–100
    last_completed_node: str

    # ── Inputs ────────────────────────────────────────────────────────────────
    content: str                            # raw DXF text
    include_ac: bool
    meter_count: Optional[int]              # None → configured coincident factor

    # ── Collaborators ─────────────────────────────────────────────────────────
    classifier: Any                         # async classify(rooms, context, include_ac, focus_categories=None)
    retriever: Any                          # async search(query, top_k)
    on_progress: Optional[Callable[[str, int, int], None]]

    # ── Geometry (parse_geometry / aggregate_rooms) ───────────────────────────
    raw_rooms: List[Any]                    # label_matcher.RawRoom
    units: Any                              # polygon_builder.UnitDetection
    layers_used: dict
    resolved_labels: List[str]
    unique_rooms: List[Any]                 # room_aggregator.UniqueRoomInput

    # ── External decisions (retrieve_context / classify_rooms) ────────────────
    code_context: str
    classifications: List[Any]              # models.classification.RoomClassification

    # ── Output ────────────────────────────────────────────────────────────────
    warnings: List[str]
    result: Optional[dict]
    error: Optional[str]
    error_node: Optional[str]
