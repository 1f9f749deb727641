"""Plug-n-Pay: pay-per-call API marketplace backend with x402 payment intents."""

__version__ = "1.0.0"
