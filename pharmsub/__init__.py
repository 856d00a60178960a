"""Pharmsub: multi-month prescription subscription tracking for pharmacies."""

__version__ = "0.1.0"
