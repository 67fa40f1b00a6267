"""
REST API module for the JMA Warning Checker.

Provides endpoints for:
- Active warning reports per publisher and city
- Consumed bulletin references
- Service health and check results
- Manual check trigger
"""

import logging
import os
from typing import List, Optional
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .checker import CheckResult, WarningChecker
from .cleanup import Cleanup
from .config import Config
from .database import Database, StoreError
from .fetcher import JMAFetcher
from .notifier import EmailNotifier
from .scheduler import FAILURE_WARNING_THRESHOLD, WarningScheduler

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================

class CityReport(BaseModel):
    id: int
    lmo: str
    city: str
    warning_kind: str
    status: str
    xml_file: str
    created_at: str


class BulletinReference(BaseModel):
    id: int
    lmo: str
    xml_file: str
    created_at: str


class OutcomeModel(BaseModel):
    lmo: str
    xml_file: Optional[str]
    transitions: dict
    notifications_sent: int
    notification_failures: List[str]
    reports_inserted: int
    reports_updated: int
    reports_deleted: int
    references_added: int
    references_deleted: List[str]
    skipped: Optional[str]


class CheckResultModel(BaseModel):
    success: bool
    started_at: str
    duration_ms: int
    feed_modified: bool
    error_message: Optional[str]
    outcomes: List[OutcomeModel]


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    database: str
    scheduler: str
    risks: List[str]


class SystemStatus(BaseModel):
    status: str
    uptime: str
    scheduler: dict
    monitored_regions: dict
    data_summary: dict
    last_check: Optional[CheckResultModel]
    risks: List[str]


# =============================================================================
# Global State
# =============================================================================

config: Optional[Config] = None
db: Optional[Database] = None
checker: Optional[WarningChecker] = None
scheduler: Optional[WarningScheduler] = None
start_time: Optional[datetime] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global config, db, checker, scheduler, start_time

    logger.info("Starting JMA Warning Checker...")
    start_time = datetime.utcnow()

    config = Config.from_env()
    db = Database(config.db_path)
    fetcher = JMAFetcher(config.data_dir)
    notifier = EmailNotifier(config)
    cleanup = Cleanup(db, config.data_dir, config.deleted_dir, config.retention_days)
    checker = WarningChecker(db, fetcher, notifier, cleanup, config.monitored_regions)
    scheduler = WarningScheduler(
        checker,
        cleanup,
        notifier=notifier,
        check_interval=config.check_interval_minutes,
        heartbeat_path=config.heartbeat_path,
    )

    logger.info("Running initial weather check...")
    scheduler.trigger_immediate_check()

    scheduler.start()

    yield

    logger.info("Shutting down...")
    if scheduler:
        scheduler.stop()
    fetcher.close()
    if db:
        db.close()
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="JMA Warning Checker API",
    description="Municipal weather warnings from the JMA XML feed",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Utility Functions
# =============================================================================

def to_result_model(result: CheckResult) -> CheckResultModel:
    outcomes = []
    for outcome in result.outcomes:
        transitions = {}
        for record in outcome.transitions:
            key = record.transition.value
            transitions[key] = transitions.get(key, 0) + 1
        outcomes.append(OutcomeModel(
            lmo=outcome.lmo,
            xml_file=outcome.xml_file,
            transitions=transitions,
            notifications_sent=sum(1 for n in outcome.notifications if n.delivered),
            notification_failures=[n.error or "" for n in outcome.notify_failures],
            reports_inserted=outcome.reports_inserted,
            reports_updated=outcome.reports_updated,
            reports_deleted=outcome.reports_deleted,
            references_added=outcome.references_added,
            references_deleted=outcome.references_deleted,
            skipped=outcome.skipped,
        ))
    return CheckResultModel(
        success=result.success,
        started_at=result.started_at,
        duration_ms=result.duration_ms,
        feed_modified=result.feed_modified,
        error_message=result.error_message,
        outcomes=outcomes,
    )


def detect_risks() -> List[str]:
    """Detect system risks."""
    if not db or not scheduler:
        return ["System not initialized"]

    risks = []
    if scheduler.consecutive_failures >= FAILURE_WARNING_THRESHOLD:
        risks.append(f"Weather check failing repeatedly ({scheduler.consecutive_failures} times)")

    last = checker.last_result if checker else None
    if last is not None:
        if not last.success:
            risks.append(f"Last check failed: {last.error_message}")
        for outcome in last.outcomes:
            if outcome.skipped:
                risks.append(f"Bulletin skipped for {outcome.lmo}: {outcome.skipped}")
            if outcome.notify_failures:
                risks.append(f"Notifications failed for {outcome.lmo}: {len(outcome.notify_failures)}")
    return risks


def get_uptime() -> str:
    """Get formatted uptime string."""
    if not start_time:
        return "N/A"
    delta = datetime.utcnow() - start_time
    hours, remainder = divmod(int(delta.total_seconds()), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h {minutes}m {seconds}s"


# =============================================================================
# API Endpoints - Info
# =============================================================================

@app.get("/", tags=["Info"])
async def root():
    """API information."""
    return {
        "name": "JMA Warning Checker API",
        "version": "1.0.0",
        "description": "Municipal weather warnings from the JMA XML feed",
        "monitored_regions": config.monitored_regions if config else {},
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    risks = detect_risks()

    return HealthResponse(
        status="healthy" if not risks else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        database="connected" if db else "disconnected",
        scheduler="running" if scheduler and scheduler.is_running else "stopped",
        risks=risks
    )


# =============================================================================
# API Endpoints - Reports
# =============================================================================

@app.get("/reports", response_model=List[CityReport], tags=["Reports"])
async def get_reports(
    lmo: Optional[str] = Query(default=None, description="Publishing office"),
    city: Optional[str] = Query(default=None, description="City name")
):
    """Get active warning reports."""
    if not db:
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        reports = db.get_active_reports(lmo=lmo, city=city)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [CityReport(**r) for r in reports]


@app.get("/references", response_model=List[BulletinReference], tags=["Reports"])
async def get_references(lmo: Optional[str] = Query(default=None)):
    """Get bulletin documents currently referenced."""
    if not db:
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        references = db.get_references(lmo=lmo)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [BulletinReference(**r) for r in references]


# =============================================================================
# API Endpoints - System Status
# =============================================================================

@app.get("/status", response_model=SystemStatus, tags=["Status"])
async def get_system_status():
    """Get comprehensive system status."""
    if not db or not scheduler or not checker:
        raise HTTPException(status_code=503, detail="Service not initialized")

    risks = detect_risks()
    if not risks:
        status = "healthy"
    elif len(risks) <= 1:
        status = "degraded"
    else:
        status = "unhealthy"

    last = checker.last_result
    return SystemStatus(
        status=status,
        uptime=get_uptime(),
        scheduler=scheduler.get_scheduler_status(),
        monitored_regions=checker.monitored_regions,
        data_summary=db.get_data_summary(),
        last_check=to_result_model(last) if last else None,
        risks=risks
    )


# =============================================================================
# API Endpoints - Admin
# =============================================================================

@app.post("/check", response_model=CheckResultModel, tags=["Admin"])
def trigger_check():
    """Manually trigger a warning check."""
    if not scheduler:
        raise HTTPException(status_code=503, detail="Scheduler not available")

    return to_result_model(scheduler.trigger_immediate_check())


@app.get("/check/results", response_model=Optional[CheckResultModel], tags=["Admin"])
async def get_check_results():
    """Get the result of the last check."""
    if not checker:
        raise HTTPException(status_code=503, detail="Checker not available")

    last = checker.last_result
    return to_result_model(last) if last else None


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "warning_checker.api:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("DEBUG", "false").lower() == "true"
    )
