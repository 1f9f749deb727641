"""Configuration package for the Plug-n-Pay API."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
