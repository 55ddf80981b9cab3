"""Periodic productivity insight generation."""

from .generator import InsightGenerator, periods_overlap, usage_between

__all__ = ["InsightGenerator", "periods_overlap", "usage_between"]
