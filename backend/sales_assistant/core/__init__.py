"""
Core application modules.
Contains configuration, logging, metrics and resilience primitives.
"""
from .config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
