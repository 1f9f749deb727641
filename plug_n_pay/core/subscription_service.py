"""Subscription plans offered by developers."""
import uuid
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from plug_n_pay.core.exceptions import PlanNotFoundError
from plug_n_pay.database.models import SubscriptionPlan

logger = structlog.get_logger(__name__)


def _parse_uuid(value: str | uuid.UUID) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class SubscriptionService:
    """Creates, lists and retires per-call pricing plans."""

    async def create_plan(
        self,
        db: AsyncSession,
        developer_id: uuid.UUID,
        name: str,
        price_per_call: Decimal,
        description: Optional[str] = None,
        daily_cap: Optional[Decimal] = None,
        monthly_cap: Optional[Decimal] = None,
    ) -> SubscriptionPlan:
        """
        Create a new active subscription plan.

        Args:
            db: Database session
            developer_id: Owning developer
            name: Plan name
            price_per_call: Price of one call in AVAX
            description: Optional description
            daily_cap: Optional daily spend cap in AVAX
            monthly_cap: Optional monthly spend cap in AVAX

        Returns:
            SubscriptionPlan: The created plan
        """
        plan = SubscriptionPlan(
            id=uuid.uuid4(),
            developer_id=developer_id,
            name=name,
            description=description,
            price_per_call=price_per_call,
            daily_cap=daily_cap,
            monthly_cap=monthly_cap,
            is_active=True,
        )
        db.add(plan)
        await db.flush()

        logger.info(
            "subscription_plan_created",
            plan_id=str(plan.id),
            developer_id=str(developer_id),
            price_per_call=str(price_per_call),
        )
        return plan

    async def get_plans_by_developer(
        self, db: AsyncSession, developer_id: uuid.UUID
    ) -> List[SubscriptionPlan]:
        """Active plans of a developer, newest first."""
        stmt = (
            select(SubscriptionPlan)
            .where(
                SubscriptionPlan.developer_id == developer_id,
                SubscriptionPlan.is_active.is_(True),
            )
            .order_by(SubscriptionPlan.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_plan_by_id(
        self, db: AsyncSession, plan_id: str | uuid.UUID
    ) -> Optional[SubscriptionPlan]:
        """Look up a plan; malformed ids are treated as unknown."""
        plan_uuid = _parse_uuid(plan_id)
        if plan_uuid is None:
            return None

        result = await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.id == plan_uuid))
        return result.scalar_one_or_none()

    async def deactivate_plan(
        self, db: AsyncSession, developer_id: uuid.UUID, plan_id: str | uuid.UUID
    ) -> SubscriptionPlan:
        """
        Retire a plan so it no longer appears in listings or sells access.

        Raises:
            PlanNotFoundError: If the plan does not exist or belongs to another developer
        """
        plan = await self.get_plan_by_id(db, plan_id)
        if plan is None or plan.developer_id != developer_id:
            raise PlanNotFoundError(str(plan_id))

        plan.is_active = False
        await db.flush()

        logger.info("subscription_plan_deactivated", plan_id=str(plan.id))
        return plan
