"""Configuration module for the resharding tool."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
