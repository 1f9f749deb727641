"""External service integrations."""
from .avalanche_rpc import AvalancheRPCClient, CircuitBreaker, RPCError, RPCErrorType

__all__ = ["AvalancheRPCClient", "CircuitBreaker", "RPCError", "RPCErrorType"]
