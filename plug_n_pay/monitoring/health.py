"""
Health check endpoints for readiness and liveness checks.

Checks:
- Database connectivity
- Avalanche RPC node reachability
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text

from plug_n_pay.config import get_settings
from plug_n_pay.database.connection import get_session_factory
from plug_n_pay.integrations.avalanche_rpc import AvalancheRPCClient, RPCError

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - RPC node reachability check
    - Overall system health status
    """

    def __init__(self, rpc_client: Optional[AvalancheRPCClient] = None) -> None:
        """Initialize health check service."""
        self.settings = get_settings()
        self.rpc_client = rpc_client

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()

            return {
                "status": "healthy",
                "service": "database",
                "message": "Database connection successful",
            }

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    async def check_rpc(self) -> Dict[str, Any]:
        """
        Check that the Avalanche RPC node answers.

        Raises:
            HealthCheckError: If the node cannot be reached
        """
        if self.rpc_client is None:
            self.rpc_client = AvalancheRPCClient(max_attempts=1)

        try:
            block_number = await self.rpc_client.get_block_number()
            return {
                "status": "healthy",
                "service": "avalanche_rpc",
                "message": "RPC node reachable",
                "block_number": block_number,
            }

        except (RPCError, ValueError, TypeError) as e:
            logger.error("rpc_health_check_failed", error=str(e))
            raise HealthCheckError(f"RPC health check failed: {str(e)}")

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks: Dict[str, Any] = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("avalanche_rpc", self.check_rpc)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness check.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness check: all dependencies must be available."""
        return await self.check_all()
