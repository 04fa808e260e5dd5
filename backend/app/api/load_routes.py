"""
DXF load estimation endpoints.

POST /api/dxf/analyze       : run the pipeline, return the result JSON
POST /api/dxf/analyze/stream: same, as SSE: `progress` events then one `result`
"""
import json
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from app.agents.config import SUPPORTED_ELECTRICAL_CODES
from app.agents.load_graph import failure_result, run_load_estimation
from app.api.deps import get_classifier, get_retriever
from app.models.progress_models import ProgressEvent, format_sse

logger = logging.getLogger("elc-api")

router = APIRouter(prefix="/api/dxf", tags=["Load Estimation"])


def _validate_options(electrical_code: str, meter_count: Optional[int]) -> None:
    if electrical_code.strip().upper() not in SUPPORTED_ELECTRICAL_CODES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported electrical code '{electrical_code}'. Supported: {', '.join(SUPPORTED_ELECTRICAL_CODES)}",
        )
    if meter_count is not None and meter_count < 1:
        raise HTTPException(status_code=422, detail="meter_count must be at least 1")


async def _read_dxf(file: UploadFile) -> str:
    try:
        contents = await file.read()
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Failed to read uploaded file: {e}")
    # DXF is text; legacy exports in a code page degrade to replacement chars in labels only
    return contents.decode("utf-8", errors="replace")


@router.post("/analyze")
async def analyze_dxf(
    file: UploadFile = File(...),
    include_ac: bool = Form(False),
    electrical_code: str = Form("DPS-01"),
    meter_count: Optional[int] = Form(None),
    classifier=Depends(get_classifier),
    retriever=Depends(get_retriever),
):
    """Estimate connected and demand loads for every room in a DXF floor plan."""
    _validate_options(electrical_code, meter_count)
    content = await _read_dxf(file)

    result = await run_load_estimation(
        content,
        include_ac=include_ac,
        meter_count=meter_count,
        classifier=classifier,
        retriever=retriever,
    )
    if not result["success"]:
        logger.info(f"Load estimation failed for {file.filename}: {result['error']}")
        return JSONResponse(status_code=422, content=result)
    return result


@router.post("/analyze/stream")
async def analyze_dxf_stream(
    file: UploadFile = File(...),
    include_ac: bool = Form(False),
    electrical_code: str = Form("DPS-01"),
    meter_count: Optional[int] = Form(None),
    classifier=Depends(get_classifier),
    retriever=Depends(get_retriever),
):
    """Server-Sent Events stream of pipeline progress, ending with the result."""
    _validate_options(electrical_code, meter_count)
    content = await _read_dxf(file)
    filename = file.filename

    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(step: str, index: int, total: int) -> None:
        queue.put_nowait(("progress", ProgressEvent(step=step, index=index, total=total).model_dump_json()))

    async def produce() -> None:
        try:
            result = await run_load_estimation(
                content,
                include_ac=include_ac,
                meter_count=meter_count,
                classifier=classifier,
                retriever=retriever,
                on_progress=on_progress,
            )
        except Exception as e:
            logger.error(f"Streaming load estimation crashed for {filename}: {e}", exc_info=True)
            result = failure_result(str(e) or "Unexpected server error")
        await queue.put(("result", json.dumps(result)))

    async def stream():
        task = asyncio.create_task(produce())
        try:
            while True:
                event, data = await queue.get()
                yield format_sse(event, data)
                if event == "result":
                    break
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
