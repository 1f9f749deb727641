"""
API routes for the pay-per-call marketplace.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from plug_n_pay.config import get_settings
from plug_n_pay.core.developer_service import DeveloperService
from plug_n_pay.core.exceptions import PlugNPayError
from plug_n_pay.core.subscription_service import SubscriptionService
from plug_n_pay.core.usage_service import UsageService
from plug_n_pay.core.x402_service import X402Service
from plug_n_pay.database.connection import get_db
from plug_n_pay.database.models import Developer
from plug_n_pay.monitoring.health import HealthCheck
from plug_n_pay.monitoring.metrics import metrics

from .schemas import (
    CheckAccessData,
    CheckAccessRequest,
    CreatePlanRequest,
    DeveloperProfileData,
    DeveloperRegistrationData,
    HealthCheckResponse,
    PlanData,
    PlanListResponse,
    RegisterDeveloperRequest,
    SuccessResponse,
    UsageData,
    VerifyPaymentData,
    VerifyPaymentRequest,
)

logger = structlog.get_logger(__name__)

settings = get_settings()

# Create routers
developer_router = APIRouter(prefix="/api/developers", tags=["developers"])
subscription_router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])
payment_router = APIRouter(prefix="/api/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])

# Initialize services
developer_service = DeveloperService()
subscription_service = SubscriptionService()
usage_service = UsageService()
x402_service = X402Service(
    subscription_service=subscription_service,
    usage_service=usage_service,
)
health_check = HealthCheck(rpc_client=x402_service.rpc_client)


def _domain_http_error(error: PlugNPayError) -> HTTPException:
    return HTTPException(status_code=error.http_status, detail=error.user_message)


async def authenticate_developer(
    api_key: Optional[str] = Header(default=None, alias=settings.api_key_header),
    db: AsyncSession = Depends(get_db),
) -> Developer:
    """Resolve the calling developer from the API key header."""
    if not api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required")

    try:
        developer = await developer_service.get_developer_by_api_key(db, api_key)
    except Exception as e:
        logger.error("api_authentication_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication failed",
        )

    if developer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Developer not found")

    structlog.contextvars.bind_contextvars(developer_id=str(developer.id))
    return developer


# ---------------------------------------------------------------------------
# Developers
# ---------------------------------------------------------------------------


@developer_router.post(
    "/register",
    response_model=SuccessResponse[DeveloperRegistrationData],
    status_code=status.HTTP_201_CREATED,
    summary="Register a developer",
    description="Register an API provider and issue its API key",
)
async def register_developer(
    request: RegisterDeveloperRequest,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Register a new developer."""
    try:
        developer = await developer_service.create_developer(
            db,
            wallet_address=request.wallet_address,
            company_name=request.company_name,
            email=request.email,
        )
        await db.commit()

    except PlugNPayError as e:
        logger.warning("api_register_developer_rejected", error=str(e))
        metrics.record_developer_registration("conflict")
        raise _domain_http_error(e)

    except Exception as e:
        logger.error("api_register_developer_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register developer",
        )

    metrics.record_developer_registration("created")
    return {
        "success": True,
        "data": {
            "developer_id": developer.id,
            "api_key": developer.api_key,
            "wallet_address": developer.wallet_address,
        },
    }


@developer_router.get(
    "/profile",
    response_model=SuccessResponse[DeveloperProfileData],
    summary="Get developer profile",
)
async def get_developer_profile(
    developer: Developer = Depends(authenticate_developer),
) -> Dict[str, Any]:
    """Profile of the developer owning the API key."""
    return {
        "success": True,
        "data": {
            "developer_id": developer.id,
            "wallet_address": developer.wallet_address,
            "company_name": developer.company_name,
            "email": developer.email,
            "created_at": developer.created_at,
        },
    }


# ---------------------------------------------------------------------------
# Subscription plans
# ---------------------------------------------------------------------------


@subscription_router.post(
    "/plans",
    response_model=SuccessResponse[PlanData],
    status_code=status.HTTP_201_CREATED,
    summary="Create a subscription plan",
)
async def create_plan(
    request: CreatePlanRequest,
    developer: Developer = Depends(authenticate_developer),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Create a per-call plan owned by the authenticated developer."""
    try:
        plan = await subscription_service.create_plan(
            db,
            developer_id=developer.id,
            name=request.name,
            description=request.description,
            price_per_call=request.price_per_call,
            daily_cap=request.daily_cap,
            monthly_cap=request.monthly_cap,
        )
        await db.commit()

    except Exception as e:
        logger.error("api_create_plan_error", developer_id=str(developer.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create subscription plan",
        )

    metrics.record_plan_created()
    return {"success": True, "data": PlanData.model_validate(plan)}


@subscription_router.get(
    "/plans",
    response_model=PlanListResponse,
    summary="List subscription plans",
    description="Active plans of the authenticated developer, newest first",
)
async def list_plans(
    developer: Developer = Depends(authenticate_developer),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    try:
        plans = await subscription_service.get_plans_by_developer(db, developer.id)
    except Exception as e:
        logger.error("api_list_plans_error", developer_id=str(developer.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get subscription plans",
        )

    return {"success": True, "data": [PlanData.model_validate(plan) for plan in plans]}


@subscription_router.get(
    "/plans/{plan_id}",
    response_model=SuccessResponse[PlanData],
    summary="Get a subscription plan",
)
async def get_plan(
    plan_id: str,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Public plan lookup used by consumers before paying."""
    try:
        plan = await subscription_service.get_plan_by_id(db, plan_id)
    except Exception as e:
        logger.error("api_get_plan_error", plan_id=plan_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get subscription plan",
        )

    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Subscription plan not found"
        )

    return {"success": True, "data": PlanData.model_validate(plan)}


@subscription_router.delete(
    "/plans/{plan_id}",
    response_model=SuccessResponse[PlanData],
    summary="Deactivate a subscription plan",
)
async def deactivate_plan(
    plan_id: str,
    developer: Developer = Depends(authenticate_developer),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    try:
        plan = await subscription_service.deactivate_plan(db, developer.id, plan_id)
        await db.commit()

    except PlugNPayError as e:
        raise _domain_http_error(e)

    except Exception as e:
        logger.error("api_deactivate_plan_error", plan_id=plan_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to deactivate subscription plan",
        )

    return {"success": True, "data": PlanData.model_validate(plan)}


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@payment_router.post(
    "/check-access",
    response_model=SuccessResponse[CheckAccessData],
    summary="Check access",
    description="Check whether a wallet may call under a plan and get an x402 payment intent",
)
async def check_access(
    request: CheckAccessRequest,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    try:
        result = await x402_service.check_access(db, request.customer_wallet, request.plan_id)

    except PlugNPayError as e:
        logger.warning("api_check_access_rejected", plan_id=request.plan_id, error=str(e))
        raise _domain_http_error(e)

    except Exception as e:
        logger.error("api_check_access_error", plan_id=request.plan_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check access",
        )

    return {"success": True, "data": CheckAccessData.model_validate(result)}


@payment_router.post(
    "/verify",
    response_model=SuccessResponse[VerifyPaymentData],
    summary="Verify payment",
    description="Verify an on-chain payment and grant one API call",
)
async def verify_payment(
    request: VerifyPaymentRequest,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    logger.info(
        "api_verify_payment_request",
        transaction_hash=request.transaction_hash,
        customer_wallet=request.customer_wallet,
        plan_id=request.plan_id,
    )

    try:
        granted = await x402_service.verify_and_grant_access(
            db,
            transaction_hash=request.transaction_hash,
            customer_wallet=request.customer_wallet,
            plan_id=request.plan_id,
        )
        await db.commit()

    except PlugNPayError as e:
        logger.warning("api_verify_payment_rejected", plan_id=request.plan_id, error=str(e))
        raise _domain_http_error(e)

    except Exception as e:
        logger.error("api_verify_payment_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify payment",
        )

    return {"success": True, "data": {"access_granted": granted}}


@payment_router.get(
    "/usage",
    response_model=SuccessResponse[UsageData],
    summary="Customer usage",
    description="A wallet's spend on a plan for the current UTC day and month",
)
async def get_usage(
    customer_wallet: str = Query(..., min_length=1),
    plan_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    try:
        plan = await subscription_service.get_plan_by_id(db, plan_id)
        if plan is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Subscription plan not found"
            )

        customer = await usage_service.get_customer(db, customer_wallet)
        if customer is None:
            totals = {"daily_total": 0, "monthly_total": 0}
        else:
            totals = await usage_service.get_customer_usage(db, customer.id, plan.id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error("api_get_usage_error", plan_id=plan_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get usage",
        )

    return {"success": True, "data": totals}


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
)
async def liveness() -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
)
async def readiness() -> Dict[str, Any]:
    """Readiness endpoint; 503 unless every dependency is up."""
    try:
        result = await health_check.readiness()
    except Exception as e:
        logger.error("readiness_check_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready",
        )

    if result["status"] != "healthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready",
        )
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
