"""Configuration loading for fetchkit."""

from .settings import FetchSettings

__all__ = ["FetchSettings"]
