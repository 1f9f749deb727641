"""
Prometheus metrics for the pay-per-call marketplace.

Tracks:
- Developer registrations and plan creation
- Access checks by outcome
- Payment verifications by outcome
- Avalanche RPC calls, latency and errors
- RPC circuit breaker state
"""
from prometheus_client import Counter, Gauge, Histogram

# Account metrics
developer_registrations_total = Counter(
    "developer_registrations_total",
    "Total developer registrations",
    ["status"],  # created, conflict
)

subscription_plans_created_total = Counter(
    "subscription_plans_created_total",
    "Total subscription plans created",
)

# Payment flow metrics
access_checks_total = Counter(
    "access_checks_total",
    "Total access checks",
    ["reason"],  # payment_required, plan_inactive, daily_cap_exceeded, monthly_cap_exceeded
)

payment_verifications_total = Counter(
    "payment_verifications_total",
    "Total payment verifications",
    ["outcome"],  # granted, unverified, duplicate
)

payment_verification_duration_seconds = Histogram(
    "payment_verification_duration_seconds",
    "Payment verification duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# RPC metrics
rpc_requests_total = Counter(
    "avalanche_rpc_requests_total",
    "Total Avalanche RPC requests",
    ["method", "status"],
)

rpc_errors_total = Counter(
    "avalanche_rpc_errors_total",
    "Total Avalanche RPC errors",
    ["error_type"],  # transient, permanent, rate_limit, circuit_open
)

rpc_duration_seconds = Histogram(
    "avalanche_rpc_duration_seconds",
    "Avalanche RPC call duration in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

rpc_circuit_breaker_state = Gauge(
    "avalanche_rpc_circuit_breaker_state",
    "RPC circuit breaker state (0=closed, 1=open, 2=half_open)",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_developer_registration(status: str) -> None:
        """Record a developer registration attempt."""
        developer_registrations_total.labels(status=status).inc()

    @staticmethod
    def record_plan_created() -> None:
        """Record a new subscription plan."""
        subscription_plans_created_total.inc()

    @staticmethod
    def record_access_check(reason: str) -> None:
        """Record an access check outcome."""
        access_checks_total.labels(reason=reason).inc()

    @staticmethod
    def record_payment_verification(outcome: str, duration_seconds: float) -> None:
        """Record a payment verification outcome."""
        payment_verifications_total.labels(outcome=outcome).inc()
        payment_verification_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_rpc_call(method: str, status: str, duration_seconds: float) -> None:
        """Record an RPC call."""
        rpc_requests_total.labels(method=method, status=status).inc()
        rpc_duration_seconds.labels(method=method).observe(duration_seconds)

    @staticmethod
    def record_rpc_error(error_type: str) -> None:
        """Record an RPC error."""
        rpc_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        rpc_circuit_breaker_state.set(state_map.get(state, 0))


# Export singleton instance
metrics = MetricsCollector()
