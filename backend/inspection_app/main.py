"""
Institutional Inspections - FastAPI Application

Main entry point for the inspection risk-assessment backend.

Architecture:
- Catalog (pillars, indicators, thresholds) -> Risk Scoring Engine -> RiskScoreResult
- Inspection: DRAFT -> SUBMITTED (terminal), guarded by a conditional update
- Config snapshot per inspection, scored against forever
- Audit trail: buffered single-writer recorder, append-only
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import init_db, SessionLocal
from .routers import inspections_router, catalog_router
from .services.audit_trail import AuditTrailRecorder, DatabaseAuditSink
from .settings import LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and the audit writer on startup; drain it on shutdown."""
    init_db()
    recorder = AuditTrailRecorder(DatabaseAuditSink(SessionLocal))
    recorder.start()
    app.state.audit_recorder = recorder
    yield
    lost = recorder.close(timeout=30)
    if lost:
        logger.error(f"{lost} audit events were not persisted at shutdown")

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Institutional Inspections",
    description="""
    Institutional Food Safety Inspections - Risk Assessment Core

    ## Lifecycle
    1. **Create**: draft inspection with a frozen threshold snapshot
    2. **Responses**: weighted indicator answers, scored on every submission
    3. **Samples & Photos**: append-only evidence while in draft
    4. **Submit**: completeness gate, then terminal and immutable

    ## Key Principles
    - A submitted inspection never changes
    - Classification is reproducible from the inspection's own snapshot
    - Every mutation leaves an ordered, append-only audit event
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(inspections_router)
app.include_router(catalog_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Institutional Inspections",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m inspection_app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
