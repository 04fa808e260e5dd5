"""
DPS-01 context retrieval from the pgvector knowledge base.

A single monolithic query mixing densities, demand factors and room names
embeds poorly against any one section of the standard, so retrieval is split
into focused topic queries issued in parallel and merged with exact-content
deduplication. Failures degrade to less (or no) context, never to an error.
"""
import os
import json
import asyncio
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text

from app.agents.config import (
    DOCUMENTS_TABLE,
    RAG_CACHE_MAX,
    RAG_CHUNK_SEPARATOR,
    RAG_TOP_K,
    SIMILARITY_THRESHOLD,
)
from app.services.llm_client import LLMClient

logger = logging.getLogger("elc-rag")


@dataclass(frozen=True)
class RetrievedChunk:
    content: str
    source: Optional[str] = None


@dataclass
class CodeContext:
    text: str
    chunk_count: int
    failed_queries: int
    total_queries: int

    @property
    def all_failed(self) -> bool:
        return self.total_queries > 0 and self.failed_queries == self.total_queries


class RetrievalCache:
    """
    Bounded FIFO memo of (query, top_k) → chunks.

    Thread-safe; evicts the oldest insertion when full. Reads do not refresh
    an entry's position.
    """

    def __init__(self, max_size: int = RAG_CACHE_MAX):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._entries: "OrderedDict[tuple[str, int], list[RetrievedChunk]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, query: str, top_k: int) -> Optional[list[RetrievedChunk]]:
        with self._lock:
            cached = self._entries.get((query, top_k))
            return list(cached) if cached is not None else None

    def set(self, query: str, top_k: int, chunks: list[RetrievedChunk]) -> None:
        key = (query, top_k)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = list(chunks)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: tuple[str, int]) -> bool:
        with self._lock:
            return key in self._entries


class CodeRetriever:
    """
    Embeds a query and runs a cosine-similarity search over the documents table.

    Without an injected session factory the knowledge base is the one named by
    DATABASE_URL; when that is unset every search returns no chunks and the
    embedding provider is never called.
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        cache: Optional[RetrievalCache] = None,
        session_factory=None,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ):
        self._llm = llm or LLMClient()
        self._cache = cache if cache is not None else RetrievalCache()
        self._session_factory = session_factory
        self.similarity_threshold = similarity_threshold
        self._warned_unconfigured = False

    @property
    def cache(self) -> RetrievalCache:
        return self._cache

    @property
    def knowledge_base_configured(self) -> bool:
        return self._session_factory is not None or bool(os.getenv("DATABASE_URL"))

    def _sessions(self):
        if self._session_factory is None:
            from app.db import AsyncSessionLocal
            self._session_factory = AsyncSessionLocal
        return self._session_factory

    async def search(self, query: str, top_k: int) -> list[RetrievedChunk]:
        if not self.knowledge_base_configured:
            if not self._warned_unconfigured:
                logger.warning("DATABASE_URL not set; code context retrieval skipped")
                self._warned_unconfigured = True
            return []

        cached = self._cache.get(query, top_k)
        if cached is not None:
            return cached

        embedding = await self._llm.embed(query)
        vector_literal = "[" + ",".join(f"{v:.8f}" for v in embedding) + "]"
        sql = text(
            f"SELECT content, metadata, 1 - (embedding <=> CAST(:embedding AS vector)) AS similarity "
            f"FROM {DOCUMENTS_TABLE} "
            f"ORDER BY embedding <=> CAST(:embedding AS vector) "
            f"LIMIT :top_k"
        )
        async with self._sessions()() as session:
            result = await session.execute(sql, {"embedding": vector_literal, "top_k": top_k})
            rows = result.mappings().all()

        chunks = [
            RetrievedChunk(content=row["content"], source=_source_of(row["metadata"]))
            for row in rows
            if row["similarity"] is not None and row["similarity"] >= self.similarity_threshold
        ]
        logger.debug(f"Retrieved {len(chunks)}/{len(rows)} chunks above threshold for {query[:60]!r}")
        self._cache.set(query, top_k, chunks)
        return chunks


def _source_of(metadata) -> Optional[str]:
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError:
            return None
    if isinstance(metadata, dict):
        source = metadata.get("source")
        return str(source) if source is not None else None
    return None


# ── Query construction ────────────────────────────────────────────────────────

def build_rag_queries(room_names: list[str]) -> list[tuple[str, int]]:
    """
    Topic-scoped retrieval queries with their top-K caps.

    Order: category definitions, load densities (with the drawing's room
    names), demand factors, coincident / diversity factors.
    """
    rooms_fragment = ", ".join(room_names)
    queries = [
        "DPS-01 customer category definitions Table 2 C1 residential C2 commercial "
        "C7 offices C11 common areas services building classification",
        "DPS-01 connected loads estimation load density VA per square meter residential C1 "
        "commercial C2 habitable wet circulation Table 7 Table 8 facility type "
        f"room type: {rooms_fragment}",
        "DPS-01 demand factor Table 11 Table 3 connected load tier residential C1 commercial C2 "
        "after diversity maximum demand ADMD kVA",
        "DPS-01 coincident factor diversity factor Table 4 simultaneous demand number of meters "
        "residential commercial",
    ]
    return list(zip(queries, RAG_TOP_K))


def build_retry_query(categories: list[str], top_k: int) -> list[tuple[str, int]]:
    """Single query scoped to categories whose density came back as zero."""
    codes = " ".join(categories)
    return [(
        f"DPS-01 load density VA per square meter for customer categories {codes} "
        "connected load estimation table common area shared services",
        top_k,
    )]


async def gather_code_context(retriever, queries: list[tuple[str, int]]) -> CodeContext:
    """
    Run every query in parallel and merge the results.

    Individual failures are logged and contribute nothing. Chunks are
    deduplicated by exact content in first-seen order (query order, then rank).
    """
    results = await asyncio.gather(
        *(retriever.search(query, top_k) for query, top_k in queries),
        return_exceptions=True,
    )

    seen: set[str] = set()
    contents: list[str] = []
    failed = 0
    for (query, _), result in zip(queries, results):
        if isinstance(result, BaseException):
            failed += 1
            logger.warning(f"Retrieval failed for query {query[:60]!r}: {type(result).__name__}: {result}")
            continue
        for chunk in result:
            if chunk.content in seen:
                continue
            seen.add(chunk.content)
            contents.append(chunk.content)

    logger.info(f"Code context: {len(contents)} unique chunks from {len(queries) - failed}/{len(queries)} queries")
    return CodeContext(
        text=RAG_CHUNK_SEPARATOR.join(contents),
        chunk_count=len(contents),
        failed_queries=failed,
        total_queries=len(queries),
    )
