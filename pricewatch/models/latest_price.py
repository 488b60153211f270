"""
Latest market snapshot per symbol
"""
from sqlalchemy import Column, String, Float, DateTime
from pricewatch.core.database import Base

class LatestPrice(Base):
    """Current-value row, overwritten on every ingestion cycle"""
    __tablename__ = "latest_prices"

    symbol = Column(String(20), primary_key=True)
    provider_id = Column(String(64), nullable=False)
    name = Column(String(100), nullable=True)
    image = Column(String(255), nullable=True)
    price = Column(Float, nullable=True)
    change_24h = Column(Float, nullable=True)
    change_pct_24h = Column(Float, nullable=True)
    volume_24h = Column(Float, nullable=True)
    market_cap = Column(Float, nullable=True)
    observed_at = Column(DateTime(timezone=True), nullable=False, index=True)
