"""API customers and their paid usage."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plug_n_pay.core.exceptions import DuplicatePaymentError
from plug_n_pay.core.normalization import normalize_address, normalize_tx_hash
from plug_n_pay.database.models import ApiCustomer, UsageLog, utcnow

logger = structlog.get_logger(__name__)


def day_start(now: datetime) -> datetime:
    """UTC midnight of the day containing `now`."""
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(now: datetime) -> datetime:
    """UTC midnight of the first day of the month containing `now`."""
    return day_start(now).replace(day=1)


class UsageService:
    """
    Tracks API customers and the calls they paid for.

    Spend windows (daily, monthly) are computed in UTC.
    """

    async def get_customer(
        self, db: AsyncSession, wallet_address: str
    ) -> Optional[ApiCustomer]:
        result = await db.execute(
            select(ApiCustomer).where(
                ApiCustomer.wallet_address == normalize_address(wallet_address)
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_customer(self, db: AsyncSession, wallet_address: str) -> ApiCustomer:
        """
        Find the customer for a wallet, creating it on first use.

        Args:
            db: Database session
            wallet_address: Paying wallet

        Returns:
            ApiCustomer: Existing or newly created customer
        """
        wallet_address = normalize_address(wallet_address)
        customer = await self.get_customer(db, wallet_address)
        if customer is not None:
            return customer

        customer = ApiCustomer(
            id=uuid.uuid4(),
            wallet_address=wallet_address,
            current_balance=Decimal("0"),
            total_spent=Decimal("0"),
        )
        db.add(customer)
        await db.flush()

        logger.info(
            "api_customer_created",
            customer_id=str(customer.id),
            wallet_address=wallet_address,
        )
        return customer

    async def get_usage_by_payment_hash(
        self, db: AsyncSession, payment_intent_hash: str
    ) -> Optional[UsageLog]:
        result = await db.execute(
            select(UsageLog).where(
                UsageLog.payment_intent_hash == normalize_tx_hash(payment_intent_hash)
            )
        )
        return result.scalar_one_or_none()

    async def log_usage(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID,
        plan_id: uuid.UUID,
        amount: Decimal,
        payment_intent_hash: Optional[str] = None,
        api_endpoint: Optional[str] = None,
    ) -> UsageLog:
        """
        Record a paid call and update the customer's running totals.

        Args:
            db: Database session
            customer_id: Paying customer
            plan_id: Plan the call was billed under
            amount: Amount charged in AVAX
            payment_intent_hash: Verified transaction hash
            api_endpoint: Endpoint the call was made to

        Returns:
            UsageLog: The recorded usage row

        Raises:
            DuplicatePaymentError: If the payment hash was already recorded
            IntegrityError: For any other constraint violation (unknown customer or plan)
        """
        now = utcnow()
        if payment_intent_hash is not None:
            payment_intent_hash = normalize_tx_hash(payment_intent_hash)
        usage = UsageLog(
            id=uuid.uuid4(),
            customer_id=customer_id,
            plan_id=plan_id,
            amount=amount,
            payment_intent_hash=payment_intent_hash,
            api_endpoint=api_endpoint,
            timestamp=now,
        )
        db.add(usage)

        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            if payment_intent_hash is None or (
                await self.get_usage_by_payment_hash(db, payment_intent_hash) is None
            ):
                logger.error(
                    "usage_insert_rejected",
                    customer_id=str(customer_id),
                    plan_id=str(plan_id),
                    error=str(e.orig),
                )
                raise

            logger.warning(
                "usage_duplicate_payment_hash",
                customer_id=str(customer_id),
                payment_intent_hash=payment_intent_hash,
            )
            raise DuplicatePaymentError(payment_intent_hash) from e

        customer = await db.get(ApiCustomer, customer_id)
        if customer is not None:
            customer.last_used_at = now
            customer.total_spent = (customer.total_spent or Decimal("0")) + amount
            await db.flush()

        logger.info(
            "usage_logged",
            usage_id=str(usage.id),
            customer_id=str(customer_id),
            plan_id=str(plan_id),
            amount=str(amount),
        )
        return usage

    async def get_customer_usage(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID,
        plan_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> Dict[str, Decimal]:
        """
        Sum a customer's spend on a plan for the current day and month.

        Returns:
            Dict[str, Decimal]: {"daily_total": ..., "monthly_total": ...}
        """
        now = now or utcnow()

        async def _total_since(since: datetime) -> Decimal:
            stmt = select(func.coalesce(func.sum(UsageLog.amount), 0)).where(
                UsageLog.customer_id == customer_id,
                UsageLog.plan_id == plan_id,
                UsageLog.timestamp >= since,
            )
            result = await db.execute(stmt)
            return Decimal(str(result.scalar_one()))

        return {
            "daily_total": await _total_since(day_start(now)),
            "monthly_total": await _total_since(month_start(now)),
        }
