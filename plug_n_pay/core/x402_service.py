"""
x402 pay-per-call flow.

1. check_access: decide whether a wallet may call under a plan and, if it
   has to pay first, issue a payment intent addressed to the plan owner.
2. verify_and_grant_access: confirm the on-chain payment through its
   transaction receipt and record the paid call.
"""
import secrets
import string
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from plug_n_pay.config import get_settings
from plug_n_pay.core.exceptions import DuplicatePaymentError, PlanNotFoundError
from plug_n_pay.core.normalization import normalize_address, normalize_tx_hash
from plug_n_pay.core.subscription_service import SubscriptionService
from plug_n_pay.core.usage_service import UsageService
from plug_n_pay.database.models import SubscriptionPlan
from plug_n_pay.integrations.avalanche_rpc import AvalancheRPCClient, RPCError
from plug_n_pay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

WEI_PER_AVAX = 10**18
INTENT_TYPE = "x402_payment_intent"
GRANTED_ENDPOINT = "api-call"

_BASE36 = string.digits + string.ascii_lowercase


def parse_ether(amount: str | Decimal) -> int:
    """
    Convert an AVAX amount to wei.

    Raises:
        ValueError: If the amount is not a number or has more than 18 decimals
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid AVAX amount: {amount!r}") from e

    wei = value * WEI_PER_AVAX
    if wei != wei.to_integral_value():
        raise ValueError(f"AVAX amount has more than 18 decimal places: {amount!r}")
    return int(wei)


class X402Service:
    """Payment intents and payment verification for per-call access."""

    def __init__(
        self,
        rpc_client: Optional[AvalancheRPCClient] = None,
        subscription_service: Optional[SubscriptionService] = None,
        usage_service: Optional[UsageService] = None,
    ):
        """
        Initialize the x402 service.

        Args:
            rpc_client: Optional Avalanche RPC client
            subscription_service: Optional subscription service
            usage_service: Optional usage service
        """
        self.settings = get_settings()
        self.rpc_client = rpc_client or AvalancheRPCClient()
        self.subscription_service = subscription_service or SubscriptionService()
        self.usage_service = usage_service or UsageService()

        logger.info("x402_service_initialized")

    @staticmethod
    def generate_intent_id(now_ms: Optional[int] = None) -> str:
        """Unique intent id: intent_<ms>_<9 base-36 chars>."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
        return f"intent_{now_ms}_{suffix}"

    def create_payment_intent(
        self,
        from_address: str,
        to_address: str,
        amount: str | Decimal,
        callback_url: str,
    ) -> Dict[str, Any]:
        """
        Build an x402 payment intent.

        Args:
            from_address: Paying wallet
            to_address: Receiving wallet (plan owner)
            amount: Amount in AVAX
            callback_url: URL the wallet reports back to

        Returns:
            Dict[str, Any]: {from, to, value (wei as string), data}
        """
        now_ms = int(time.time() * 1000)
        intent = {
            "from": from_address,
            "to": to_address,
            "value": str(parse_ether(amount)),
            "data": {
                "type": INTENT_TYPE,
                "callback_url": callback_url,
                "timestamp": now_ms,
                "intent_id": self.generate_intent_id(now_ms),
            },
        }

        logger.info(
            "payment_intent_created",
            intent_id=intent["data"]["intent_id"],
            from_address=from_address,
            to_address=to_address,
            amount=str(amount),
        )
        return intent

    async def check_access(
        self, db: AsyncSession, customer_wallet: str, plan_id: str
    ) -> Dict[str, Any]:
        """
        Decide whether a wallet may call an API under a plan.

        Every call is paid individually, so an allowed call still comes back
        with can_access=False and a payment intent to settle first.

        Returns:
            Dict[str, Any]: {can_access, reason, payment_intent}

        Raises:
            PlanNotFoundError: If the plan does not exist
        """
        customer_wallet = normalize_address(customer_wallet)
        plan = await self.subscription_service.get_plan_by_id(db, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)

        reason = await self._denial_reason(db, customer_wallet, plan)
        if reason is not None:
            metrics.record_access_check(reason)
            logger.info(
                "access_denied",
                customer_wallet=customer_wallet,
                plan_id=str(plan.id),
                reason=reason,
            )
            return {"can_access": False, "reason": reason, "payment_intent": None}

        payment_intent = self.create_payment_intent(
            customer_wallet,
            plan.developer.wallet_address,
            plan.price_per_call,
            self.settings.payment_callback_url,
        )
        metrics.record_access_check("payment_required")
        return {
            "can_access": False,
            "reason": "payment_required",
            "payment_intent": payment_intent,
        }

    async def _denial_reason(
        self, db: AsyncSession, customer_wallet: str, plan: SubscriptionPlan
    ) -> Optional[str]:
        if not plan.is_active:
            return "plan_inactive"

        if plan.daily_cap is None and plan.monthly_cap is None:
            return None

        customer = await self.usage_service.get_customer(db, customer_wallet)
        if customer is None:
            spent = {"daily_total": Decimal("0"), "monthly_total": Decimal("0")}
        else:
            spent = await self.usage_service.get_customer_usage(db, customer.id, plan.id)

        price = plan.price_per_call
        if plan.daily_cap is not None and spent["daily_total"] + price > plan.daily_cap:
            return "daily_cap_exceeded"
        if plan.monthly_cap is not None and spent["monthly_total"] + price > plan.monthly_cap:
            return "monthly_cap_exceeded"
        return None

    async def verify_payment(self, transaction_hash: str) -> bool:
        """
        Check that a transaction was mined successfully.

        RPC failures are logged and count as unverified.
        """
        try:
            receipt = await self.rpc_client.get_transaction_receipt(transaction_hash)
        except RPCError as e:
            logger.error(
                "payment_verification_rpc_error",
                transaction_hash=transaction_hash,
                error_type=e.error_type.value,
                error=str(e),
            )
            return False

        if not receipt:
            logger.info("transaction_receipt_not_found", transaction_hash=transaction_hash)
            return False

        status = receipt.get("status")
        try:
            succeeded = int(str(status), 16) == 1
        except ValueError:
            succeeded = False

        logger.info(
            "transaction_receipt_checked",
            transaction_hash=transaction_hash,
            status=status,
            block_number=receipt.get("blockNumber"),
        )
        return succeeded

    async def verify_and_grant_access(
        self,
        db: AsyncSession,
        transaction_hash: str,
        customer_wallet: str,
        plan_id: str,
    ) -> bool:
        """
        Verify a payment and record the paid call.

        A transaction hash grants at most one call, whatever its letter case.
        The plan must still be active and the call must fit under its caps.

        Returns:
            bool: True if access was granted

        Raises:
            PlanNotFoundError: If the plan does not exist
        """
        transaction_hash = normalize_tx_hash(transaction_hash)
        customer_wallet = normalize_address(customer_wallet)
        start_time = time.monotonic()

        plan = await self.subscription_service.get_plan_by_id(db, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)

        reason = await self._denial_reason(db, customer_wallet, plan)
        if reason is not None:
            logger.warning(
                "payment_refused",
                transaction_hash=transaction_hash,
                customer_wallet=customer_wallet,
                plan_id=str(plan.id),
                reason=reason,
            )
            metrics.record_payment_verification("denied", time.monotonic() - start_time)
            return False

        if await self.usage_service.get_usage_by_payment_hash(db, transaction_hash):
            logger.warning(
                "payment_already_used",
                transaction_hash=transaction_hash,
                customer_wallet=customer_wallet,
            )
            metrics.record_payment_verification("duplicate", time.monotonic() - start_time)
            return False

        if not await self.verify_payment(transaction_hash):
            metrics.record_payment_verification("unverified", time.monotonic() - start_time)
            return False

        customer = await self.usage_service.get_or_create_customer(db, customer_wallet)
        try:
            await self.usage_service.log_usage(
                db,
                customer_id=customer.id,
                plan_id=plan.id,
                amount=plan.price_per_call,
                payment_intent_hash=transaction_hash,
                api_endpoint=GRANTED_ENDPOINT,
            )
        except DuplicatePaymentError:
            metrics.record_payment_verification("duplicate", time.monotonic() - start_time)
            return False

        metrics.record_payment_verification("granted", time.monotonic() - start_time)
        logger.info(
            "access_granted",
            transaction_hash=transaction_hash,
            customer_id=str(customer.id),
            plan_id=str(plan.id),
        )
        return True
