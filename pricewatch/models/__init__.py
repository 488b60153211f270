from pricewatch.models.alert import Alert, AlertHistory
from pricewatch.models.latest_price import LatestPrice
from pricewatch.models.notification import Notification

__all__ = ["Alert", "AlertHistory", "LatestPrice", "Notification"]
