"""Regent — weighted multi-signature governance over managed resources."""

__version__ = "0.1.0"
