"""
Server-Sent Event payload models for /api/dxf/analyze/stream.

The stream is a sequence of `progress` events followed by exactly one
`result` event carrying the same JSON the non-streaming endpoint returns.
"""
from pydantic import BaseModel


class ProgressEvent(BaseModel):
    """One user-facing pipeline step starting."""
    step: str       # e.g. "Parsing DXF geometry"
    index: int      # 1-based
    total: int

    model_config = {"json_schema_extra": {
        "example": {"step": "Analyzing rooms with AI", "index": 3, "total": 4}
    }}


def format_sse(event: str, data: str) -> str:
    """Frame a JSON string as one SSE message."""
    return f"event: {event}\ndata: {data}\n\n"
