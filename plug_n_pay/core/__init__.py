"""Core marketplace services."""
from .developer_service import DeveloperService
from .exceptions import (
    DeveloperAlreadyExistsError,
    DeveloperNotFoundError,
    DuplicatePaymentError,
    PlanNotFoundError,
    PlugNPayError,
)
from .subscription_service import SubscriptionService
from .usage_service import UsageService
from .x402_service import X402Service

__all__ = [
    "DeveloperService",
    "SubscriptionService",
    "UsageService",
    "X402Service",
    "PlugNPayError",
    "DeveloperAlreadyExistsError",
    "DeveloperNotFoundError",
    "DuplicatePaymentError",
    "PlanNotFoundError",
]
