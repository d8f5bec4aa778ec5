"""Poker league tournament session engine."""

__version__ = "0.1.0"
