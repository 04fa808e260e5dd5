"""
Load Estimation Graph.

Nodes: parse_geometry → aggregate_rooms → retrieve_context → classify_rooms
       → retry_zero_rates → assemble_loads

Only geometry failures (unreadable DXF, no rooms) end a run early. Retrieval
and classification problems are absorbed as warnings and per-room errors, so
a caller always gets a well-formed result.
"""
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from langgraph.graph import StateGraph, END

from app.agents.config import (
    DECLARED_LOAD_CATEGORIES,
    DEFAULT_COINCIDENT_FACTOR,
    NODE_PROGRESS,
    PIPELINE_STEPS,
    RAG_RETRY_TOP_K,
    RAG_CHUNK_SEPARATOR,
)
from app.agents.graph_state import LoadEstimationState
from app.services.code_retriever import (
    build_rag_queries,
    build_retry_query,
    gather_code_context,
)
from app.services.dxf_parser import parse_dxf_content
from app.services.errors import LoadEstimationError, NoRoomsFoundError
from app.services.label_matcher import match_labels_to_rooms
from app.services.load_assembler import assemble_loads as assemble_room_loads, coincident_factor_for_meters
from app.services.load_summary import compute_building_summary
from app.services.perf_monitor import metrics
from app.services.polygon_builder import build_room_polygons, detect_units
from app.services.room_aggregator import aggregate_rooms as aggregate_raw_rooms, normalize_room_key

logger = logging.getLogger("elc-pipeline")

# Node → index into PIPELINE_STEPS announced when the node starts
NODE_STEP: dict[str, int] = {
    "parse_geometry": 0,
    "retrieve_context": 1,
    "classify_rooms": 2,
    "assemble_loads": 3,
}

RETRIEVAL_FAILED_WARNING = "DPS-01 code context retrieval failed, results may be less accurate."
CLASSIFICATION_FAILED_WARNING = "AI room analysis failed, load values will be empty."


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def failure_result(error: str) -> dict:
    """Result shape for a run that produced no rooms."""
    return {"success": False, "error": error, "timestamp": _now()}


def _emit_progress(state: LoadEstimationState, node_name: str) -> None:
    callback = state.get("on_progress")
    if callback is None or node_name not in NODE_STEP:
        return
    index = NODE_STEP[node_name]
    try:
        callback(PIPELINE_STEPS[index], index + 1, len(PIPELINE_STEPS))
    except Exception as e:
        logger.warning(f"[{state.get('run_id')}] Progress callback failed: {e}")


# ── Node factory ───────────────────────────────────────────────────────────────

def make_node(name: str, impl: Callable):
    """
    Factory: wraps an implementation with progress reporting, timing and
    error capture. Once a run has an error every later node is a passthrough.
    """
    progress = NODE_PROGRESS[name]

    async def node(state: LoadEstimationState) -> LoadEstimationState:
        if state.get("error"):
            return state

        run_id = state.get("run_id", "-")
        state["current_node"] = name
        state["progress_pct"] = progress
        logger.info(f"[{run_id}] Entering {name} ({progress}%)", extra={"run_id": run_id, "stage": name})
        _emit_progress(state, name)

        start = time.perf_counter()
        try:
            state = await impl(state)
        except LoadEstimationError as e:
            state["error"] = str(e)
            state["error_node"] = name
            logger.warning(f"[{run_id}] {name} aborted the run: {e}", extra={"run_id": run_id})
        except Exception as e:
            state["error"] = str(e) or "Unexpected server error"
            state["error_node"] = name
            logger.error(f"[{run_id}] {name} failed: {e}", exc_info=True, extra={"run_id": run_id})
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            metrics.record_node_duration(name, duration_ms)

        state["last_completed_node"] = name
        return state

    node.__name__ = name
    return node


# ── NODE IMPLEMENTATIONS ───────────────────────────────────────────────────────

async def _parse_geometry_impl(state: LoadEstimationState) -> LoadEstimationState:
    """DXF text → RawRooms with labels, areas in m² and the detected unit."""
    parsed = parse_dxf_content(state["content"])
    candidates = build_room_polygons(parsed.lw_polyline_verts, parsed.legacy_polyline_verts)
    units = detect_units(candidates, parsed.insunits)
    raw_rooms = match_labels_to_rooms(parsed.texts, candidates, units.factor)

    if not raw_rooms:
        raise NoRoomsFoundError()

    state["raw_rooms"] = raw_rooms
    state["units"] = units
    state["layers_used"] = parsed.layers_used.to_dict()
    logger.info(
        f"[{state['run_id']}] {len(raw_rooms)} rooms, units: {units.unit}",
        extra={"run_id": state["run_id"], "room_count": len(raw_rooms)},
    )
    return state


async def _aggregate_rooms_impl(state: LoadEstimationState) -> LoadEstimationState:
    aggregate = aggregate_raw_rooms(state["raw_rooms"])
    state["resolved_labels"] = aggregate.resolved_labels
    state["unique_rooms"] = aggregate.unique_rooms
    return state


async def _retrieve_context_impl(state: LoadEstimationState) -> LoadEstimationState:
    """Parallel topic-scoped retrieval; an outage leaves the context empty."""
    queries = build_rag_queries([room.name for room in state["unique_rooms"]])
    context = await gather_code_context(state["retriever"], queries)
    if context.all_failed:
        state["warnings"] = [*state.get("warnings", []), RETRIEVAL_FAILED_WARNING]
    state["code_context"] = context.text
    return state


async def _classify_rooms_impl(state: LoadEstimationState) -> LoadEstimationState:
    """Single classifier call; failure marks every room unclassified."""
    try:
        classifications = await state["classifier"].classify(
            state["unique_rooms"], state.get("code_context", ""), state.get("include_ac", False),
        )
    except Exception as e:
        logger.warning(f"[{state['run_id']}] Room classification failed: {e}", extra={"run_id": state["run_id"]})
        state["warnings"] = [*state.get("warnings", []), CLASSIFICATION_FAILED_WARNING]
        classifications = []
    state["classifications"] = list(classifications)
    return state


def zero_rate_labels(classifications: list) -> list[str]:
    """Normalised labels with a zero density in a category that should have one."""
    return [
        normalize_room_key(c.room_label)
        for c in classifications
        if c.load_density_va_m2 == 0 and c.customer_category not in DECLARED_LOAD_CATEGORIES
    ]


async def _retry_zero_rates_impl(state: LoadEstimationState) -> LoadEstimationState:
    """
    One extra round trip for rooms whose density came back as zero in an
    area-priced category. Replacements are kept only when positive.
    """
    classifications = state.get("classifications", [])
    labels = set(zero_rate_labels(classifications))
    if not labels:
        return state

    run_id = state["run_id"]
    categories = sorted({
        c.customer_category for c in classifications if normalize_room_key(c.room_label) in labels
    })
    rooms = [room for room in state["unique_rooms"] if normalize_room_key(room.name) in labels]
    if not rooms:
        return state
    logger.info(f"[{run_id}] Retrying {len(rooms)} zero-rate rooms in {', '.join(categories)}")

    retry_context = await gather_code_context(
        state["retriever"], build_retry_query(categories, RAG_RETRY_TOP_K)
    )
    context = RAG_CHUNK_SEPARATOR.join(
        part for part in (retry_context.text, state.get("code_context", "")) if part
    )
    try:
        retried = await state["classifier"].classify(
            rooms, context, state.get("include_ac", False), focus_categories=categories,
        )
    except Exception as e:
        logger.warning(f"[{run_id}] Zero-rate retry failed, keeping first pass: {e}")
        return state

    replacements = {
        normalize_room_key(c.room_label): c
        for c in retried
        if c.load_density_va_m2 > 0 and normalize_room_key(c.room_label) in labels
    }
    state["classifications"] = [
        replacements.get(normalize_room_key(c.room_label), c) for c in classifications
    ]
    logger.info(f"[{run_id}] Zero-rate retry replaced {len(replacements)}/{len(rooms)} classifications")
    return state


async def _assemble_loads_impl(state: LoadEstimationState) -> LoadEstimationState:
    meter_count = state.get("meter_count")
    coincident_factor = (
        coincident_factor_for_meters(meter_count) if meter_count is not None else DEFAULT_COINCIDENT_FACTOR
    )

    assembled = assemble_room_loads(
        state["raw_rooms"],
        state.get("classifications", []),
        state["resolved_labels"],
        coincident_factor,
    )
    summary = compute_building_summary(assembled.room_load_inputs)

    result = {
        "success": True,
        "rooms": [room.to_dict() for room in assembled.rooms],
        "totalConnectedLoad": summary.total_connected_load,
        "totalDemandLoad": summary.total_demand_load,
        "totalDemandLoadKVA": summary.total_demand_load_kva,
        "effectiveDemandFactor": summary.effective_demand_factor,
        "coincidentFactor": coincident_factor,
        "categoryBreakdown": [cat.to_dict() for cat in summary.category_breakdown],
        "totalRooms": len(assembled.rooms),
        "unitsDetected": state["units"].detected,
        "layersUsed": state.get("layers_used", {}),
        "hasFailedRooms": assembled.has_failed_rooms,
    }
    if state.get("warnings"):
        result["warnings"] = list(state["warnings"])
    state["result"] = result
    return state


# ── Conditional edge functions ─────────────────────────────────────────────────

def has_geometry(state: LoadEstimationState) -> str:
    if state.get("error"):
        return END
    return "aggregate_rooms"


# ── Graph construction ─────────────────────────────────────────────────────────

def build_load_graph():
    graph = StateGraph(LoadEstimationState)

    graph.add_node("parse_geometry",   make_node("parse_geometry", _parse_geometry_impl))
    graph.add_node("aggregate_rooms",  make_node("aggregate_rooms", _aggregate_rooms_impl))
    graph.add_node("retrieve_context", make_node("retrieve_context", _retrieve_context_impl))
    graph.add_node("classify_rooms",   make_node("classify_rooms", _classify_rooms_impl))
    graph.add_node("retry_zero_rates", make_node("retry_zero_rates", _retry_zero_rates_impl))
    graph.add_node("assemble_loads",   make_node("assemble_loads", _assemble_loads_impl))

    graph.set_entry_point("parse_geometry")
    graph.add_conditional_edges(
        "parse_geometry",
        has_geometry,
        {"aggregate_rooms": "aggregate_rooms", END: END},
    )
    graph.add_edge("aggregate_rooms", "retrieve_context")
    graph.add_edge("retrieve_context", "classify_rooms")
    graph.add_edge("classify_rooms", "retry_zero_rates")
    graph.add_edge("retry_zero_rates", "assemble_loads")
    graph.add_edge("assemble_loads", END)

    return graph.compile()


# Singleton compiled graph
load_graph = build_load_graph()


# ── Entry point ────────────────────────────────────────────────────────────────

async def run_load_estimation(
    content: str,
    *,
    include_ac: bool = False,
    meter_count: Optional[int] = None,
    classifier=None,
    retriever=None,
    on_progress: Optional[Callable[[str, int, int], None]] = None,
) -> dict:
    """
    Run the whole pipeline on raw DXF text and return the result dict.

    Collaborators default to the LLM classifier and pgvector retriever.
    on_progress(step, index, total) fires as each user-facing step starts.

    Raises:
        ValueError: meter_count below 1.
    """
    if meter_count is not None and meter_count < 1:
        raise ValueError(f"meter_count must be >= 1, got {meter_count}")

    if classifier is None:
        from app.services.room_classifier import RoomClassifier
        classifier = RoomClassifier()
    if retriever is None:
        from app.services.code_retriever import CodeRetriever
        retriever = CodeRetriever()

    run_id = uuid.uuid4().hex[:8]
    initial: LoadEstimationState = {
        "run_id": run_id,
        "content": content,
        "include_ac": include_ac,
        "meter_count": meter_count,
        "classifier": classifier,
        "retriever": retriever,
        "on_progress": on_progress,
        "warnings": [],
        "result": None,
        "error": None,
    }

    start = time.perf_counter()
    final = await load_graph.ainvoke(initial)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)

    if final.get("error") or not final.get("result"):
        metrics.record_run(duration_ms, success=False)
        logger.info(f"[{run_id}] Run failed in {final.get('error_node')} after {duration_ms} ms")
        return failure_result(final.get("error") or "DXF parsing failed")

    result = dict(final["result"])
    metrics.record_run(duration_ms, success=True, degraded=result["hasFailedRooms"])
    logger.info(
        f"[{run_id}] Run complete: {result['totalRooms']} rooms, "
        f"{result['totalDemandLoadKVA']} kVA demand",
        extra={"run_id": run_id, "duration_ms": duration_ms, "room_count": result["totalRooms"]},
    )
    result["timestamp"] = _now()
    return result
