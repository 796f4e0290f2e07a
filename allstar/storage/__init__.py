"""Durable storage for listings, grades, runs and feedback."""

from .base import Storage
from .mysql import MySQLStorage

__all__ = ["Storage", "MySQLStorage"]
