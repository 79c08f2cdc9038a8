# main.py - Ledger sync service
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from business.plaid_sync.scheduler import SyncScheduler
from database.supabase.orm import get_connection, run_migrations
from integrations.plaid import PlaidConfigurationError, get_plaid_client
from routers import router
from utils.constants import ENVIRONMENT, SYNC_INTERVAL_SECONDS, SYNC_SCHEDULER_ENABLED

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()  # This outputs to console
    ],
)

logger = logging.getLogger(__name__)


def _start_scheduler() -> Optional[SyncScheduler]:
    if not SYNC_SCHEDULER_ENABLED:
        logger.info("Sync scheduler disabled")
        return None
    try:
        plaid_client = get_plaid_client()
    except PlaidConfigurationError as e:
        logger.warning(f"Sync scheduler not started: {e}")
        return None
    scheduler = SyncScheduler(plaid_client, interval_seconds=SYNC_INTERVAL_SECONDS)
    scheduler.start()
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    # Startup
    logger.info("Starting application...")

    try:
        logger.info("Running database migrations...")
        run_migrations()
        logger.info("Database initialization completed successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    app.state.sync_scheduler = _start_scheduler()

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down application...")
    if app.state.sync_scheduler is not None:
        await app.state.sync_scheduler.stop()
    logger.info("Application shutdown completed")


# Create FastAPI app with lifespan events
app = FastAPI(
    title="Ledger Sync API",
    description="Plaid ledger synchronization and transfer reconciliation",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8081",
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, tags=["API v1"])


@app.get("/health")
async def health_check():
    """Health check with database connectivity test."""
    db_status = "unknown"
    try:
        conn = get_connection()
        try:
            conn.cursor().execute("SELECT 1")
            db_status = "connected"
        finally:
            conn.close()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "error"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "environment": ENVIRONMENT,
    }
