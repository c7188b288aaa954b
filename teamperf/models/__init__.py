from teamperf.models.user import User, UserLevel, UserStatus, LEVEL_ORDER, RANKED_LEVELS
from teamperf.models.order import Order, OrderStatus, QUALIFYING_STATUSES

__all__ = [
    "User",
    "UserLevel",
    "UserStatus",
    "LEVEL_ORDER",
    "RANKED_LEVELS",
    "Order",
    "OrderStatus",
    "QUALIFYING_STATUSES",
]
