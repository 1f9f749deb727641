"""Database package for the Plug-n-Pay API."""
from .connection import close_db, get_db, get_session_factory, init_db
from .models import ApiCustomer, Base, Developer, SubscriptionPlan, UsageLog

__all__ = [
    "Base",
    "Developer",
    "SubscriptionPlan",
    "ApiCustomer",
    "UsageLog",
    "get_db",
    "get_session_factory",
    "init_db",
    "close_db",
]
