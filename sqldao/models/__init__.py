"""Pydantic models."""

from .base import Entity, JsonModel
from .domain import PoolStats

__all__ = ["Entity", "JsonModel", "PoolStats"]
