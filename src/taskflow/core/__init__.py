"""Core configuration and infrastructure helpers."""

from __future__ import annotations

from .config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
