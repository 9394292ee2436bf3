"""Utility helpers for the viewer."""

from .debounce import Debouncer
from .logging import configure_logging

__all__ = ["Debouncer", "configure_logging"]
