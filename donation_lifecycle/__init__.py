"""Donation offer and claim lifecycle core."""

__version__ = "0.1.0"
