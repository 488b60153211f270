"""
Main entry point for the PriceWatch alert service
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from pricewatch.core.config import settings
from pricewatch.core.database import init_db
from pricewatch.api.routes import api_router, set_services
from pricewatch.api.schemas import HealthResponse
from pricewatch.api.security import set_identity_client
from pricewatch.services.alert_scheduler import AlertScheduler
from pricewatch.services.coingecko_client import CoinGeckoClient
from pricewatch.services.identity_client import IdentityClient
from pricewatch.services.job_scheduler import JobScheduler
from pricewatch.services.notification_dispatcher import NotificationDispatcher
from pricewatch.services.notification_service import NotificationService
from pricewatch.services.price_ingestor import PriceIngestor
from pricewatch.services.stores import AlertStore, NotificationStore, SnapshotStore

# Configure logging
log_dir = os.path.dirname(settings.LOG_FILE)
if log_dir:
    os.makedirs(log_dir, exist_ok=True)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# Global services
market_client = None
identity_client = None
price_ingestor = None
alert_scheduler = None
job_scheduler = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global market_client, identity_client, price_ingestor, alert_scheduler, job_scheduler

    logger.info(f"Starting PriceWatch ({settings.ENVIRONMENT})...")

    # Initialize database
    await init_db()

    # Initialize services
    alert_store = AlertStore()
    snapshot_store = SnapshotStore()
    notification_store = NotificationStore()
    market_client = CoinGeckoClient(
        timeout_seconds=settings.MARKET_DATA_TIMEOUT_SECONDS,
        base_url=settings.COINGECKO_BASE_URL,
        api_key=settings.COINGECKO_API_KEY,
    )
    identity_client = IdentityClient(settings)
    if not identity_client.is_configured():
        logger.warning("Identity provider is not configured; authenticated routes will answer 500")

    price_ingestor = PriceIngestor(market_client, snapshot_store, alert_store, settings=settings)
    dispatcher = NotificationDispatcher(notification_store, delivery=NotificationService(settings))
    alert_scheduler = AlertScheduler(
        alert_store,
        snapshot_store,
        dispatcher,
        interval_seconds=settings.MONITOR_INTERVAL_SECONDS,
    )

    set_services(price_ingestor, alert_scheduler, alert_store, notification_store)
    set_identity_client(identity_client)

    # Start scheduled jobs
    job_scheduler = JobScheduler(price_ingestor, alert_scheduler, settings=settings)
    if settings.SCHEDULER_ENABLED:
        job_scheduler.start()
    else:
        logger.info("Scheduled jobs disabled (SCHEDULER_ENABLED=false)")

    logger.info("PriceWatch started successfully!")

    yield

    # Cleanup
    logger.info("Shutting down PriceWatch...")
    job_scheduler.shutdown()
    set_services(None, None, None, None)
    set_identity_client(None)
    await market_client.close()
    await identity_client.close()
    logger.info("PriceWatch stopped.")

# Create FastAPI app
app = FastAPI(
    title="PriceWatch",
    description="Crypto price alert monitoring service",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router)

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "PriceWatch API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    last_pass = alert_scheduler.last_result.to_dict() if alert_scheduler and alert_scheduler.last_result else None
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduler_running": bool(job_scheduler and job_scheduler.scheduler.running),
        "alert_scheduler": alert_scheduler.state.value if alert_scheduler else "unavailable",
        "last_pass": last_pass,
        "jobs": job_scheduler.get_jobs() if job_scheduler else [],
        "market_data": price_ingestor.get_health() if price_ingestor else {},
    }

def main():
    """Run the API server"""
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower()
    )

if __name__ == "__main__":
    main()
