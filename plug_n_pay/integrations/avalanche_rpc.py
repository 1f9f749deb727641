"""
Avalanche C-Chain JSON-RPC client with retry logic and error classification.

Implements:
- Exponential backoff for transient errors
- Circuit breaker pattern
- Transaction receipt lookup for payment verification
"""
import itertools
import time
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from plug_n_pay.config import get_settings
from plug_n_pay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# JSON-RPC error codes
RPC_INTERNAL_ERROR = -32603
RPC_LIMIT_EXCEEDED = -32005


class RPCErrorType(Enum):
    """Classification of RPC errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with backoff
    CIRCUIT_OPEN = "circuit_open"  # Fail fast


class RPCError(Exception):
    """Base exception for RPC-related errors."""

    def __init__(
        self,
        message: str,
        error_type: RPCErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize RPC error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Underlying transport or protocol exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        return self.error_type in (RPCErrorType.TRANSIENT, RPCErrorType.RATE_LIMIT)


class CircuitBreaker:
    """
    Circuit breaker for RPC calls.

    Stops sending requests to a failing node until a cool-down has passed,
    then lets a single trial call through (half-open). Other calls fail
    fast until that trial settles.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 1,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open
        self.trial_in_flight = False

    def before_call(self) -> None:
        """
        Gate a call through the breaker.

        Raises:
            RPCError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time is not None
                and time.monotonic() - self.last_failure_time >= self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise RPCError("Circuit breaker is open", RPCErrorType.CIRCUIT_OPEN)

        if self.state == "half_open":
            if self.trial_in_flight:
                raise RPCError(
                    "Circuit breaker is half-open, trial call in progress",
                    RPCErrorType.CIRCUIT_OPEN,
                )
            self.trial_in_flight = True

    def on_success(self) -> None:
        """Record successful call."""
        self.trial_in_flight = False
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.trial_in_flight = False
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
            self._set_state("open")

    def release_trial(self) -> None:
        """Free the half-open slot when a trial ends without a verdict."""
        self.trial_in_flight = False

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


class AvalancheRPCClient:
    """
    Thin JSON-RPC 2.0 client for the Avalanche C-Chain.

    Features:
    - Automatic retry with exponential backoff
    - Circuit breaker pattern
    - Error classification (transient, permanent, rate limit)
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize RPC client.

        Args:
            rpc_url: JSON-RPC endpoint (defaults to settings)
            http_client: Optional httpx client (created lazily if not provided)
            max_attempts: Attempts per call including the first
            base_delay: Base delay for exponential backoff (seconds)
            circuit_breaker: Optional circuit breaker
        """
        settings = get_settings()
        self.settings = settings
        self.rpc_url = rpc_url or settings.avalanche_rpc_url
        self.max_attempts = max_attempts or settings.rpc_retry_max_attempts
        self.base_delay = settings.rpc_retry_base_delay if base_delay is None else base_delay
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.rpc_circuit_failure_threshold,
            timeout=settings.rpc_circuit_timeout_seconds,
        )
        self.http_client = http_client
        self._owns_client = http_client is None
        self._ids = itertools.count(1)

        logger.info("avalanche_rpc_client_initialized", rpc_url=self.rpc_url)

    def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=self.settings.rpc_timeout_seconds)
        return self.http_client

    @staticmethod
    def _classify_rpc_error(code: Optional[int]) -> RPCErrorType:
        """
        Classify a JSON-RPC error object by its code.

        Args:
            code: JSON-RPC error code

        Returns:
            RPCErrorType: Error classification
        """
        if code == RPC_LIMIT_EXCEEDED:
            return RPCErrorType.RATE_LIMIT
        if code == RPC_INTERNAL_ERROR:
            return RPCErrorType.TRANSIENT
        return RPCErrorType.PERMANENT

    @staticmethod
    def _classify_status(status_code: int) -> RPCErrorType:
        if status_code == 429:
            return RPCErrorType.RATE_LIMIT
        if status_code >= 500:
            return RPCErrorType.TRANSIENT
        return RPCErrorType.PERMANENT

    async def _send(self, method: str, params: List[Any]) -> Any:
        """
        Perform a single JSON-RPC request.

        Raises:
            RPCError: Classified error
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        client = self._ensure_client()

        try:
            response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RPCError(f"RPC transport error: {e}", RPCErrorType.TRANSIENT, e) from e

        if response.status_code != 200:
            raise RPCError(
                f"RPC node returned HTTP {response.status_code}",
                self._classify_status(response.status_code),
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RPCError("RPC node returned invalid JSON", RPCErrorType.TRANSIENT, e) from e

        error = body.get("error")
        if error:
            code = error.get("code")
            raise RPCError(
                f"RPC error {code}: {error.get('message', 'unknown error')}",
                self._classify_rpc_error(code),
            )

        return body.get("result")

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Call a JSON-RPC method with circuit breaking and retries.

        Args:
            method: RPC method name (e.g. 'eth_getTransactionReceipt')
            params: Positional parameters

        Returns:
            Any: The `result` member of the response

        Raises:
            RPCError: If the call fails permanently or retries are exhausted
        """
        params = params or []
        start_time = time.monotonic()

        retrying = AsyncRetrying(
            retry=retry_if_exception(lambda e: isinstance(e, RPCError) and e.retryable),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=8),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    self.circuit_breaker.before_call()
                    try:
                        result = await self._send(method, params)
                    except RPCError as e:
                        if e.error_type == RPCErrorType.PERMANENT:
                            # the node answered; the request itself was bad
                            self.circuit_breaker.on_success()
                        else:
                            self.circuit_breaker.on_failure()
                        logger.warning(
                            "rpc_attempt_failed",
                            method=method,
                            attempt=attempt.retry_state.attempt_number,
                            error_type=e.error_type.value,
                            error=str(e),
                        )
                        raise
                    except BaseException:
                        self.circuit_breaker.release_trial()
                        raise
                    self.circuit_breaker.on_success()
        except RPCError as e:
            metrics.record_rpc_error(e.error_type.value)
            metrics.record_rpc_call(method, "error", time.monotonic() - start_time)
            logger.error(
                "rpc_call_failed",
                method=method,
                error_type=e.error_type.value,
                error=str(e),
            )
            raise

        metrics.record_rpc_call(method, "success", time.monotonic() - start_time)
        return result

    async def get_transaction_receipt(self, transaction_hash: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a transaction receipt.

        Args:
            transaction_hash: 0x-prefixed transaction hash

        Returns:
            Optional[Dict[str, Any]]: Receipt, or None if the transaction is
            unknown or still pending
        """
        logger.info("fetching_transaction_receipt", transaction_hash=transaction_hash)
        return await self.call("eth_getTransactionReceipt", [transaction_hash])

    async def get_block_number(self) -> int:
        """Return the latest block number."""
        result = await self.call("eth_blockNumber")
        return int(result, 16)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self.http_client is not None and self._owns_client:
            await self.http_client.aclose()
            self.http_client = None
