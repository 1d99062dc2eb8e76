"""Data Access Objects package."""

from .base import BaseDAO

__all__ = ["BaseDAO"]
