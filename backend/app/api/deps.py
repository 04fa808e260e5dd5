"""FastAPI dependency injection for the pipeline's external collaborators."""
from functools import lru_cache

from app.agents.config import RAG_CACHE_MAX
from app.services.code_retriever import CodeRetriever, RetrievalCache
from app.services.room_classifier import RoomClassifier


@lru_cache(maxsize=1)
def get_classifier() -> RoomClassifier:
    return RoomClassifier()


@lru_cache(maxsize=1)
def get_retriever() -> CodeRetriever:
    # One instance per process; its cache spans requests
    return CodeRetriever(cache=RetrievalCache(RAG_CACHE_MAX))
