"""Compiled plan cache."""

from .graph_cache import CacheStats, GraphCache, PlanFactory

__all__ = ["CacheStats", "GraphCache", "PlanFactory"]
