"""
Notification model for triggered alerts
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON
from sqlalchemy.sql import func
from pricewatch.core.database import Base

class Notification(Base):
    """Persisted user notification"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(30), nullable=False, default="alert_triggered")
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    # "<alert_id>:<triggered_at iso>"; one notification per trigger instance
    dedup_key = Column(String(100), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
