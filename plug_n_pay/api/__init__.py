"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CheckAccessRequest,
    CreatePlanRequest,
    RegisterDeveloperRequest,
    VerifyPaymentRequest,
)

__all__ = [
    "app",
    "CheckAccessRequest",
    "CreatePlanRequest",
    "RegisterDeveloperRequest",
    "VerifyPaymentRequest",
]
