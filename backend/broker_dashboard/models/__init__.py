"""Database models"""

from broker_dashboard.models.user import User
from broker_dashboard.models.subscription import Subscription

__all__ = ["User", "Subscription"]
