"""
Electrical Load Estimator API
FastAPI backend: DXF floor plan → DPS-01 connected / demand loads.
Gemini 2.5 Flash primary LLM + Groq LLaMA fallback, pgvector knowledge base.
"""
import os
import time
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware
from app.services.perf_monitor import metrics as pipeline_metrics

# Load .env file automatically in dev (no-op if the file is missing)
load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("elc-api")

_PROCESS_START = time.monotonic()

# Startup validation
if not os.getenv("DATABASE_URL"):
    logger.warning("MISSING env var: DATABASE_URL, code context retrieval will be empty")
for var in ["GEMINI_API_KEY", "GROQ_API_KEY"]:
    if not os.getenv(var):
        logger.info(f"Optional env var not set: {var}")

from app.agents.config import LLM_PRIMARY_MODEL, SUPPORTED_ELECTRICAL_CODES  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        from app.db import init_db
        await init_db()
    except Exception as e:
        logger.warning(f"Knowledge base init warning: {e}")
    yield
    try:
        from app.db import engine
        await engine.dispose()
    except Exception as e:
        logger.debug(f"Engine dispose skipped: {e}")


app = FastAPI(
    title="Electrical Load Estimator API",
    version="1.0.0",
    description="Room-by-room DPS-01 electrical load estimation from DXF floor plans",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS: restricted to allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.load_routes import router as load_router  # noqa: E402

app.include_router(load_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
        "knowledge_base_configured": bool(os.getenv("DATABASE_URL")),
        "llm_primary": LLM_PRIMARY_MODEL,
        "electrical_codes": list(SUPPORTED_ELECTRICAL_CODES),
        "pipeline": pipeline_metrics.get_metrics(),
    }
