"""
Alert and alert history models
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text, JSON, ForeignKey
from sqlalchemy.sql import func
from pricewatch.core.database import Base

class Alert(Base):
    """User-defined threshold watch on one symbol"""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    symbol = Column(String(20), nullable=False, index=True)
    name = Column(String(100), nullable=True)
    condition_type = Column(String(20), nullable=False, default="price")  # price, volume, price_change, market_cap
    direction = Column(String(10), nullable=False)  # above, below
    target_value = Column(Float, nullable=False)
    active = Column(Boolean, nullable=False, default=True, index=True)
    triggered_at = Column(DateTime(timezone=True), nullable=True)
    recurring = Column(Boolean, nullable=False, default=False)
    recurring_interval = Column(String(10), nullable=True)  # daily, weekly, monthly
    next_trigger = Column(DateTime(timezone=True), nullable=True)
    priority = Column(String(10), nullable=False, default="medium")  # low, medium, high
    notification_methods = Column(JSON, nullable=False, default=lambda: ["push"])
    last_observed_value = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def display_name(self) -> str:
        return self.name or self.symbol.upper()


class AlertHistory(Base):
    """Insert-only record of a triggered alert"""
    __tablename__ = "alert_history"

    id = Column(Integer, primary_key=True, index=True)
    alert_id = Column(Integer, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    triggered_at = Column(DateTime(timezone=True), nullable=False)
    observed_value = Column(Float, nullable=False)
    condition_met = Column(Text, nullable=False)
    notification_sent = Column(Boolean, nullable=False, default=False)
    symbol = Column(String(20), nullable=False)
    name = Column(String(100), nullable=True)
