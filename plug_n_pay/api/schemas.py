"""
Pydantic schemas for API request/response models.

Successful responses are wrapped as {"success": true, "data": ...};
errors are {"error": "..."}.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer

from plug_n_pay.core.normalization import normalize_address, normalize_tx_hash

T = TypeVar("T")

TRANSACTION_HASH_PATTERN = r"^0x[0-9a-fA-F]{64}$"


def format_avax(value: Decimal) -> str:
    """Render an AVAX amount without exponent or trailing zeros."""
    return format(value.normalize(), "f")


AvaxAmount = Annotated[Decimal, PlainSerializer(format_avax, return_type=str)]

# Hex identifiers are lower-cased so lookups and uniqueness ignore letter case
WalletAddress = Annotated[
    str, Field(min_length=1, max_length=64), AfterValidator(normalize_address)
]
TransactionHash = Annotated[
    str, Field(pattern=TRANSACTION_HASH_PATTERN), AfterValidator(normalize_tx_hash)
]


class SuccessResponse(BaseModel, Generic[T]):
    """Envelope for successful responses."""

    success: bool = True
    data: T


class ErrorResponse(BaseModel):
    """Error body returned by every failing endpoint."""

    error: str = Field(..., description="Error message")
    message: Optional[str] = Field(default=None, description="Additional detail")


# ---------------------------------------------------------------------------
# Developers
# ---------------------------------------------------------------------------


class RegisterDeveloperRequest(BaseModel):
    """Request schema for registering a developer."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "wallet_address": "0x8ba1f109551bD432803012645Ac136ddd64DBA72",
                    "company_name": "Acme Data",
                    "email": "dev@acme.io",
                }
            ]
        },
    )

    wallet_address: WalletAddress = Field(..., description="Payout wallet")
    company_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class DeveloperRegistrationData(BaseModel):
    developer_id: UUID
    api_key: str = Field(..., description="API key to send in the X-API-Key header")
    wallet_address: str


class DeveloperProfileData(BaseModel):
    developer_id: UUID
    wallet_address: str
    company_name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Subscription plans
# ---------------------------------------------------------------------------


class CreatePlanRequest(BaseModel):
    """Request schema for creating a subscription plan."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "name": "Weather API - Basic",
                    "description": "Current conditions, per call",
                    "price_per_call": "0.001",
                    "daily_cap": "0.1",
                    "monthly_cap": "2",
                }
            ]
        },
    )

    name: str = Field(..., min_length=1, max_length=255, description="Plan name")
    description: Optional[str] = Field(default=None, description="Plan description")
    price_per_call: Decimal = Field(
        ..., gt=0, max_digits=36, decimal_places=18, description="Price per call in AVAX"
    )
    daily_cap: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=36, decimal_places=18, description="Daily spend cap in AVAX"
    )
    monthly_cap: Optional[Decimal] = Field(
        default=None,
        gt=0,
        max_digits=36,
        decimal_places=18,
        description="Monthly spend cap in AVAX",
    )


class PlanData(BaseModel):
    """Subscription plan as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    developer_id: UUID
    name: str
    description: Optional[str] = None
    price_per_call: AvaxAmount
    daily_cap: Optional[AvaxAmount] = None
    monthly_cap: Optional[AvaxAmount] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class CheckAccessRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    customer_wallet: WalletAddress
    plan_id: str = Field(..., min_length=1)


# Payment intent keys are camelCase on the wire, as wallets expect them
class PaymentIntentData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    callback_url: str = Field(..., alias="callbackUrl")
    timestamp: int = Field(..., description="Creation time, ms since epoch")
    intent_id: str = Field(..., alias="intentId")


class PaymentIntent(BaseModel):
    """x402 payment intent; `value` is in wei."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from")
    to: str
    value: str
    data: PaymentIntentData


class CheckAccessData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    can_access: bool = Field(..., alias="canAccess")
    payment_intent: Optional[PaymentIntent] = Field(default=None, alias="paymentIntent")
    reason: str = Field(..., description="Why access is (not) granted right now")


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "transaction_hash": "0x" + "ab" * 32,
                    "customer_wallet": "0x71C7656EC7ab88b098defB751B7401B5f6d8976F",
                    "plan_id": "123e4567-e89b-12d3-a456-426614174000",
                }
            ]
        },
    )

    transaction_hash: TransactionHash
    customer_wallet: WalletAddress
    plan_id: str = Field(..., min_length=1)


class VerifyPaymentData(BaseModel):
    access_granted: bool


class UsageData(BaseModel):
    daily_total: AvaxAmount
    monthly_total: AvaxAmount


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")


PlanListResponse = SuccessResponse[List[PlanData]]
