"""Developer (API provider) accounts."""
import secrets
import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plug_n_pay.config import get_settings
from plug_n_pay.core.exceptions import DeveloperAlreadyExistsError
from plug_n_pay.core.normalization import normalize_address
from plug_n_pay.database.models import Developer

logger = structlog.get_logger(__name__)


class DeveloperService:
    """Registers developers and resolves them by API key or wallet."""

    def __init__(self) -> None:
        self.settings = get_settings()

    def generate_api_key(self) -> str:
        """Generate a secure API key: prefix + 32 random bytes as hex."""
        return f"{self.settings.api_key_prefix}{secrets.token_hex(32)}"

    async def create_developer(
        self,
        db: AsyncSession,
        wallet_address: str,
        company_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Developer:
        """
        Create a new developer with a fresh API key.

        Args:
            db: Database session
            wallet_address: Developer's payout wallet (any letter case)
            company_name: Optional company name
            email: Optional contact email

        Returns:
            Developer: The created developer

        Raises:
            DeveloperAlreadyExistsError: If the wallet is already registered
        """
        wallet_address = normalize_address(wallet_address)
        if await self.get_developer_by_wallet(db, wallet_address) is not None:
            raise DeveloperAlreadyExistsError(wallet_address)

        developer = Developer(
            id=uuid.uuid4(),
            api_key=self.generate_api_key(),
            wallet_address=wallet_address,
            company_name=company_name,
            email=email,
        )
        db.add(developer)

        try:
            await db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent registration of the same wallet
            await db.rollback()
            raise DeveloperAlreadyExistsError(wallet_address) from e

        logger.info(
            "developer_registered",
            developer_id=str(developer.id),
            wallet_address=wallet_address,
        )
        return developer

    async def get_developer_by_api_key(
        self, db: AsyncSession, api_key: str
    ) -> Optional[Developer]:
        result = await db.execute(select(Developer).where(Developer.api_key == api_key))
        return result.scalar_one_or_none()

    async def get_developer_by_wallet(
        self, db: AsyncSession, wallet_address: str
    ) -> Optional[Developer]:
        result = await db.execute(
            select(Developer).where(Developer.wallet_address == normalize_address(wallet_address))
        )
        return result.scalar_one_or_none()
