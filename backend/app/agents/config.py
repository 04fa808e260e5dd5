"""
Load pipeline configuration: single source of truth for step ordering,
geometry thresholds, retrieval settings and load defaults.

Import from here in all stages and services rather than hardcoding values.
"""
from __future__ import annotations

import os

# ── Pipeline steps ─────────────────────────────────────────────────────────────
# User-facing progress steps, in execution order.
# Actual wiring is in load_graph.build_load_graph().
PIPELINE_STEPS: list[str] = [
    "Parsing DXF geometry",
    "Retrieving DPS-01 code context",
    "Analyzing rooms with AI",
    "Computing final loads",
]

# Progress percentages assigned to each graph node (used for logs / SSE consumers)
NODE_PROGRESS: dict[str, int] = {
    "parse_geometry":   10,
    "aggregate_rooms":  20,
    "retrieve_context": 35,
    "classify_rooms":   60,
    "retry_zero_rates": 80,
    "assemble_loads":   95,
}


# ── Geometry thresholds ───────────────────────────────────────────────────────

# Polygons smaller than this (m², after unit conversion) are annotations or blocks
MIN_ROOM_AREA_M2: float = 0.2

# If the average sampled raw area exceeds this, drawing units are millimetres
MM_AREA_THRESHOLD: float = 500_000.0

# Divide raw mm² areas by this to get m²
MM_TO_M2_FACTOR: float = 1_000_000.0

# Number of "significant" polygons (raw area > 1 unit²) sampled for unit detection
UNIT_SAMPLE_SIZE: int = 5

# $INSUNITS header value meaning millimetres
INSUNITS_MILLIMETERS: int = 4

# Rounding precision (decimal places) for the polygon dedup key: 1 → 0.1 unit
DEDUP_PRECISION: int = 1

# Max distance (drawing units, pre-conversion) for the tolerance label pass
TEXT_MATCH_TOLERANCE: float = 500.0

# Label used when no text falls inside or near a room polygon
DEFAULT_ROOM_LABEL: str = "ROOM"

UNITS_METERS_LABEL: str = "Meters / Units (Scale 1:1)"
UNITS_MILLIMETERS_LABEL: str = "Millimeters (dividing by 1 000 000)"


# ── Load calculation defaults ─────────────────────────────────────────────────

# Building-level diversity factor applied to every room's demand load.
# Overridden per request when a meter count is supplied (see load_assembler).
DEFAULT_COINCIDENT_FACTOR: float = float(os.getenv("ELC_COINCIDENT_FACTOR", "1.0"))

# Only DPS-01 is wired into the classifier prompt today
SUPPORTED_ELECTRICAL_CODES: tuple[str, ...] = ("DPS-01",)

# DPS-01 categories priced by declared load, not by area density (rate 0 is expected)
DECLARED_LOAD_CATEGORIES: frozenset[str] = frozenset(f"C{n}" for n in range(18, 30))

CLASSIFICATION_FAILED_ERROR: str = "AI classification failed for this room"


# ── Retrieval (pgvector knowledge base) ───────────────────────────────────────

# Minimum cosine similarity for a retrieved chunk to be considered relevant.
# Kept low so numeric-heavy table chunks (demand / coincident factors) survive.
SIMILARITY_THRESHOLD: float = 0.3

# Bounded FIFO cache of (query, top_k) → chunks, shared across uploads
RAG_CACHE_MAX: int = 100

# Top-K caps per topic query, index-aligned with code_retriever.build_rag_queries()
RAG_TOP_K: tuple[int, ...] = (5, 5, 6, 6)

# Top-K for the scoped zero-rate retry query
RAG_RETRY_TOP_K: int = 6

RAG_CHUNK_SEPARATOR: str = "\n\n---\n\n"

DOCUMENTS_TABLE: str = os.getenv("ELC_DOCUMENTS_TABLE", "documents")


# ── LLM routing ───────────────────────────────────────────────────────────────

LLM_PRIMARY_MODEL: str = os.getenv("ELC_LLM_PRIMARY_MODEL", "gemini/gemini-2.5-flash")
LLM_FALLBACK_MODEL: str = os.getenv("ELC_LLM_FALLBACK_MODEL", "groq/llama-3.3-70b-versatile")
EMBEDDING_MODEL: str = os.getenv("ELC_EMBEDDING_MODEL", "gemini/gemini-embedding-001")

# Classification responses list every room; give them room to breathe
CLASSIFIER_MAX_TOKENS: int = 8192
CLASSIFIER_TEMPERATURE: float = 0.1
