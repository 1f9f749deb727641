"""
Tests for payment intents and payment verification.
"""
import re
import time
import uuid
from decimal import Decimal
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plug_n_pay.core.exceptions import PlanNotFoundError
from plug_n_pay.core.subscription_service import SubscriptionService
from plug_n_pay.core.usage_service import UsageService
from plug_n_pay.core.x402_service import INTENT_TYPE, X402Service, parse_ether
from plug_n_pay.database.models import Developer, SubscriptionPlan, UsageLog
from plug_n_pay.integrations.avalanche_rpc import AvalancheRPCClient, RPCError, RPCErrorType

from .conftest import CUSTOMER_WALLET, DEVELOPER_WALLET, FAILED_TX, SUCCESS_TX

INTENT_ID_PATTERN = re.compile(r"^intent_\d+_[0-9a-z]{9}$")


def make_rpc(receipt: Optional[dict] = None, error: Optional[Exception] = None) -> AsyncMock:
    rpc = AsyncMock(spec=AvalancheRPCClient)
    if error is not None:
        rpc.get_transaction_receipt.side_effect = error
    else:
        rpc.get_transaction_receipt.return_value = receipt
    return rpc


def receipt_rpc() -> AsyncMock:
    """RPC whose receipts succeed for SUCCESS_TX and revert for FAILED_TX."""

    async def _receipt(transaction_hash: str) -> Optional[dict]:
        if transaction_hash == SUCCESS_TX:
            return {"status": "0x1", "blockNumber": "0x10"}
        if transaction_hash == FAILED_TX:
            return {"status": "0x0", "blockNumber": "0x11"}
        return None

    rpc = AsyncMock(spec=AvalancheRPCClient)
    rpc.get_transaction_receipt.side_effect = _receipt
    return rpc


async def add_plan(db: AsyncSession, developer: Developer, **kwargs: Any) -> SubscriptionPlan:
    fields = {"name": "Capped", "price_per_call": Decimal("0.001")}
    fields.update(kwargs)
    plan = await SubscriptionService().create_plan(db, developer_id=developer.id, **fields)
    await db.commit()
    return plan


class TestParseEther:
    """Test suite for AVAX to wei conversion."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "amount,expected",
        [
            ("1", 10**18),
            ("0.001", 10**15),
            (Decimal("0.000000000000000001"), 1),
            (Decimal("2.500000000000000000"), 25 * 10**17),
        ],
    )
    def test_parse_ether(self, amount: Any, expected: int) -> None:
        assert parse_ether(amount) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", ["abc", "0.0000000000000000001"])
    def test_parse_ether_rejects_invalid(self, amount: str) -> None:
        with pytest.raises(ValueError):
            parse_ether(amount)


class TestPaymentIntent:
    """Test suite for payment intent construction."""

    @pytest.mark.unit
    def test_intent_structure(self) -> None:
        service = X402Service(rpc_client=make_rpc())
        before = int(time.time() * 1000)

        intent = service.create_payment_intent(
            CUSTOMER_WALLET, DEVELOPER_WALLET, "0.001", "http://localhost:3001/payment/callback"
        )

        assert intent["from"] == CUSTOMER_WALLET
        assert intent["to"] == DEVELOPER_WALLET
        assert intent["value"] == "1000000000000000"
        assert intent["data"]["type"] == INTENT_TYPE
        assert intent["data"]["callback_url"] == "http://localhost:3001/payment/callback"
        assert intent["data"]["timestamp"] >= before
        assert INTENT_ID_PATTERN.match(intent["data"]["intent_id"])

    @pytest.mark.unit
    def test_intent_ids_embed_timestamp(self) -> None:
        ids = {X402Service.generate_intent_id(1760000000000) for _ in range(20)}

        assert len(ids) == 20
        assert all(i.startswith("intent_1760000000000_") for i in ids)


class TestVerifyPayment:
    """Test suite for on-chain payment verification."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "receipt,expected",
        [
            ({"status": "0x1"}, True),
            ({"status": "0x0"}, False),
            ({"status": "pending"}, False),
            (None, False),
        ],
    )
    async def test_receipt_status(self, receipt: Optional[dict], expected: bool) -> None:
        service = X402Service(rpc_client=make_rpc(receipt=receipt))

        assert await service.verify_payment(SUCCESS_TX) is expected

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rpc_failure_is_unverified(self) -> None:
        rpc = make_rpc(error=RPCError("node down", RPCErrorType.TRANSIENT))
        service = X402Service(rpc_client=rpc)

        assert await service.verify_payment(SUCCESS_TX) is False
        rpc.get_transaction_receipt.assert_awaited_once_with(SUCCESS_TX)


class TestCheckAccess:
    """Test suite for access checks."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payment_required_intent_targets_plan_owner(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        plan: SubscriptionPlan,
    ) -> None:
        service = X402Service(rpc_client=make_rpc())

        async with session_factory() as db:
            result = await service.check_access(db, CUSTOMER_WALLET, str(plan.id))

        assert result["can_access"] is False
        assert result["reason"] == "payment_required"
        intent = result["payment_intent"]
        assert intent["from"] == CUSTOMER_WALLET.lower()
        assert intent["to"] == DEVELOPER_WALLET.lower()
        assert intent["value"] == str(10**15)
        assert intent["data"]["callback_url"].endswith("/payment/callback")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_plan(self, test_db: AsyncSession) -> None:
        service = X402Service(rpc_client=make_rpc())

        with pytest.raises(PlanNotFoundError):
            await service.check_access(test_db, CUSTOMER_WALLET, str(uuid.uuid4()))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inactive_plan(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_db: AsyncSession,
        developer: Developer,
        plan: SubscriptionPlan,
    ) -> None:
        await SubscriptionService().deactivate_plan(test_db, developer.id, plan.id)
        await test_db.commit()
        service = X402Service(rpc_client=make_rpc())

        async with session_factory() as db:
            result = await service.check_access(db, CUSTOMER_WALLET, str(plan.id))

        assert result == {"can_access": False, "reason": "plan_inactive", "payment_intent": None}

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "caps,reason",
        [
            ({"daily_cap": Decimal("0.0015")}, "daily_cap_exceeded"),
            ({"monthly_cap": Decimal("0.0015")}, "monthly_cap_exceeded"),
        ],
    )
    async def test_cap_exceeded(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_db: AsyncSession,
        developer: Developer,
        caps: dict,
        reason: str,
    ) -> None:
        capped = await add_plan(test_db, developer, **caps)
        service = X402Service(rpc_client=make_rpc())

        async with session_factory() as db:
            first = await service.check_access(db, CUSTOMER_WALLET, str(capped.id))
        assert first["reason"] == "payment_required"

        usage = UsageService()
        customer = await usage.get_or_create_customer(test_db, CUSTOMER_WALLET)
        await usage.log_usage(test_db, customer.id, capped.id, Decimal("0.001"), SUCCESS_TX)
        await test_db.commit()

        async with session_factory() as db:
            second = await service.check_access(db, CUSTOMER_WALLET, str(capped.id))

        assert second["can_access"] is False
        assert second["reason"] == reason
        assert second["payment_intent"] is None


class TestVerifyAndGrantAccess:
    """Test suite for granting paid calls."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_grant_then_reuse_refused(
        self, test_db: AsyncSession, plan: SubscriptionPlan
    ) -> None:
        """Test that one transaction pays for exactly one call."""
        rpc = receipt_rpc()
        service = X402Service(rpc_client=rpc)

        granted = await service.verify_and_grant_access(
            test_db, SUCCESS_TX, CUSTOMER_WALLET, str(plan.id)
        )
        await test_db.commit()

        assert granted is True
        usage = await UsageService().get_usage_by_payment_hash(test_db, SUCCESS_TX)
        assert usage is not None
        assert usage.plan_id == plan.id
        assert usage.amount == pytest.approx(Decimal("0.001"))
        assert usage.api_endpoint == "api-call"

        reused = await service.verify_and_grant_access(
            test_db, SUCCESS_TX, CUSTOMER_WALLET, str(plan.id)
        )

        assert reused is False
        rpc.get_transaction_receipt.assert_awaited_once_with(SUCCESS_TX)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_transaction_not_recorded(
        self, test_db: AsyncSession, plan: SubscriptionPlan
    ) -> None:
        service = X402Service(rpc_client=receipt_rpc())

        granted = await service.verify_and_grant_access(
            test_db, FAILED_TX, CUSTOMER_WALLET, str(plan.id)
        )

        assert granted is False
        count = await test_db.scalar(select(func.count()).select_from(UsageLog))
        assert count == 0
        assert await UsageService().get_customer(test_db, CUSTOMER_WALLET) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_plan_checked_before_rpc(self, test_db: AsyncSession) -> None:
        rpc = receipt_rpc()
        service = X402Service(rpc_client=rpc)

        with pytest.raises(PlanNotFoundError):
            await service.verify_and_grant_access(
                test_db, SUCCESS_TX, CUSTOMER_WALLET, str(uuid.uuid4())
            )

        rpc.get_transaction_receipt.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hash_reuse_in_other_letter_case_refused(
        self, test_db: AsyncSession, plan: SubscriptionPlan
    ) -> None:
        rpc = receipt_rpc()
        service = X402Service(rpc_client=rpc)
        upper_hash = "0x" + SUCCESS_TX[2:].upper()

        first = await service.verify_and_grant_access(
            test_db, upper_hash, CUSTOMER_WALLET, str(plan.id)
        )
        await test_db.commit()
        second = await service.verify_and_grant_access(
            test_db, SUCCESS_TX, CUSTOMER_WALLET, str(plan.id)
        )

        assert first is True
        assert second is False
        rpc.get_transaction_receipt.assert_awaited_once_with(SUCCESS_TX)
        count = await test_db.scalar(select(func.count()).select_from(UsageLog))
        assert count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inactive_plan_not_granted(
        self, test_db: AsyncSession, developer: Developer, plan: SubscriptionPlan
    ) -> None:
        await SubscriptionService().deactivate_plan(test_db, developer.id, plan.id)
        await test_db.commit()
        rpc = receipt_rpc()
        service = X402Service(rpc_client=rpc)

        granted = await service.verify_and_grant_access(
            test_db, SUCCESS_TX, CUSTOMER_WALLET, str(plan.id)
        )

        assert granted is False
        rpc.get_transaction_receipt.assert_not_awaited()
        assert await UsageService().get_usage_by_payment_hash(test_db, SUCCESS_TX) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cap_reached_not_granted(
        self, test_db: AsyncSession, developer: Developer
    ) -> None:
        """Test that a cap holds on the verify path, across wallet letter cases."""
        capped = await add_plan(test_db, developer, daily_cap=Decimal("0.0015"))
        rpc = make_rpc(receipt={"status": "0x1"})
        service = X402Service(rpc_client=rpc)

        first = await service.verify_and_grant_access(
            test_db, "0x" + "d4" * 32, CUSTOMER_WALLET, str(capped.id)
        )
        await test_db.commit()
        second = await service.verify_and_grant_access(
            test_db, "0x" + "e5" * 32, CUSTOMER_WALLET.upper(), str(capped.id)
        )

        assert first is True
        assert second is False
        rpc.get_transaction_receipt.assert_awaited_once_with("0x" + "d4" * 32)
