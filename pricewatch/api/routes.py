"""
API routes for the alert service
"""
from fastapi import APIRouter, HTTPException, Depends
from typing import Any, Dict, List, Optional
import logging

from pricewatch.api.schemas import (
    AlertCheckResponse,
    AlertCreate,
    AlertHistoryOut,
    AlertOut,
    NotificationOut,
    RefreshPricesResponse,
)
from pricewatch.api.security import require_bearer_user
from pricewatch.core.errors import MarketDataError, PersistenceError
from pricewatch.services.alert_scheduler import AlertScheduler
from pricewatch.services.price_ingestor import PriceIngestor
from pricewatch.services.stores import AlertStore, NotificationStore

logger = logging.getLogger(__name__)

# Create router
api_router = APIRouter()

# Global services (will be injected)
price_ingestor: Optional[PriceIngestor] = None
alert_scheduler: Optional[AlertScheduler] = None
alert_store: Optional[AlertStore] = None
notification_store: Optional[NotificationStore] = None

def set_services(pi: Optional[PriceIngestor], sched: Optional[AlertScheduler],
                 alerts: Optional[AlertStore], notifications: Optional[NotificationStore]):
    """Set global services"""
    global price_ingestor, alert_scheduler, alert_store, notification_store
    price_ingestor = pi
    alert_scheduler = sched
    alert_store = alerts
    notification_store = notifications

# Admin triggers
@api_router.post("/refresh-prices", response_model=RefreshPricesResponse)
async def refresh_prices(user: Dict[str, Any] = Depends(require_bearer_user)):
    """Run one price ingestion cycle"""
    if not price_ingestor:
        raise HTTPException(status_code=503, detail="Price ingestor not available")

    try:
        updated = await price_ingestor.refresh_prices()
        logger.info(f"Manual price refresh by {user.get('id')}: {updated} rows")
        return {"updated": updated}
    except (MarketDataError, PersistenceError) as e:
        logger.error(f"Error refreshing prices: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@api_router.post("/check-alerts", response_model=AlertCheckResponse)
async def check_alerts(user: Dict[str, Any] = Depends(require_bearer_user)):
    """Run one alert evaluation pass"""
    if not alert_scheduler:
        raise HTTPException(status_code=503, detail="Alert scheduler not available")

    try:
        result = await alert_scheduler.run_pass()
        return result.to_dict()
    except Exception as e:
        logger.error(f"Error checking alerts: {e}")
        raise HTTPException(status_code=500, detail=str(e))

# Alert Routes
@api_router.post("/alerts", response_model=AlertOut, status_code=201)
async def create_alert(payload: AlertCreate, user: Dict[str, Any] = Depends(require_bearer_user)):
    """Create an alert for the calling user"""
    if not alert_store:
        raise HTTPException(status_code=503, detail="Alert store not available")

    try:
        return await alert_store.create_alert(user_id=str(user["id"]), active=True, **payload.model_dump())
    except PersistenceError as e:
        logger.error(f"Error creating alert: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@api_router.get("/alerts", response_model=List[AlertOut])
async def list_alerts(user: Dict[str, Any] = Depends(require_bearer_user)):
    """List the calling user's alerts"""
    if not alert_store:
        raise HTTPException(status_code=503, detail="Alert store not available")

    try:
        return await alert_store.list_alerts(str(user["id"]))
    except PersistenceError as e:
        logger.error(f"Error listing alerts: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@api_router.get("/alerts/{alert_id}/history", response_model=List[AlertHistoryOut])
async def get_alert_history(alert_id: int, limit: int = 100, user: Dict[str, Any] = Depends(require_bearer_user)):
    """Get trigger history for one of the calling user's alerts"""
    if not alert_store:
        raise HTTPException(status_code=503, detail="Alert store not available")

    try:
        alert = await alert_store.get_alert(alert_id)
        if alert is None or alert.user_id != str(user["id"]):
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return await alert_store.list_history(alert_id, limit=max(1, min(limit, 500)))
    except HTTPException:
        raise
    except PersistenceError as e:
        logger.error(f"Error getting history for alert {alert_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

# Notification Routes
@api_router.get("/notifications", response_model=List[NotificationOut])
async def list_notifications(unread_only: bool = False, user: Dict[str, Any] = Depends(require_bearer_user)):
    """List the calling user's notifications, newest first"""
    if not notification_store:
        raise HTTPException(status_code=503, detail="Notification store not available")

    try:
        return await notification_store.list_for_user(str(user["id"]), unread_only=unread_only)
    except PersistenceError as e:
        logger.error(f"Error listing notifications: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@api_router.post("/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: int, user: Dict[str, Any] = Depends(require_bearer_user)):
    """Mark one notification as read"""
    if not notification_store:
        raise HTTPException(status_code=503, detail="Notification store not available")

    try:
        if not await notification_store.mark_read(notification_id, str(user["id"])):
            raise HTTPException(status_code=404, detail=f"Notification {notification_id} not found")
        return {"id": notification_id, "read": True}
    except HTTPException:
        raise
    except PersistenceError as e:
        logger.error(f"Error marking notification {notification_id} read: {e}")
        raise HTTPException(status_code=500, detail=str(e))
