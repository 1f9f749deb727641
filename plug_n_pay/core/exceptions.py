"""
Domain exceptions for the marketplace services.

Every exception carries an error code, a message that is safe to return
to API clients, and the HTTP status the API layer should answer with.
"""
from typing import Any, Dict, Optional


class PlugNPayError(Exception):
    """Base exception for all domain errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        user_message: Optional[str] = None,
        http_status: int = 500,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.user_message = user_message or "Something went wrong"
        self.http_status = http_status
        self.metadata = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {"error": self.user_message, "code": self.error_code}


class DeveloperNotFoundError(PlugNPayError):
    def __init__(self, message: str = "Developer not found", **kwargs: Any):
        super().__init__(
            message=message,
            error_code="developer_not_found",
            user_message="Developer not found",
            http_status=404,
            **kwargs,
        )


class DeveloperAlreadyExistsError(PlugNPayError):
    """A developer account already exists for the wallet."""

    def __init__(self, wallet_address: str, **kwargs: Any):
        super().__init__(
            message=f"Developer already registered for wallet {wallet_address}",
            error_code="developer_already_exists",
            user_message="A developer is already registered for this wallet address",
            http_status=409,
            wallet_address=wallet_address,
            **kwargs,
        )


class PlanNotFoundError(PlugNPayError):
    def __init__(self, plan_id: str, **kwargs: Any):
        super().__init__(
            message=f"Subscription plan {plan_id} not found",
            error_code="plan_not_found",
            user_message="Subscription plan not found",
            http_status=404,
            plan_id=plan_id,
            **kwargs,
        )


class DuplicatePaymentError(PlugNPayError):
    """
    The transaction hash has already been used to grant access.

    Raised when a usage row for the same payment hash exists.
    """

    def __init__(self, transaction_hash: str, **kwargs: Any):
        super().__init__(
            message=f"Transaction {transaction_hash} has already been used",
            error_code="duplicate_payment",
            user_message="Transaction has already been used",
            http_status=409,
            transaction_hash=transaction_hash,
            **kwargs,
        )
