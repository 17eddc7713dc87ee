"""Utility functions for the trajectory package."""

from .logging import get_logger
from .config import load_config

__all__ = ["get_logger", "load_config"]
