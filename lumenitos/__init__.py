"""Lumenitos: Soroban smart-account wallet core."""

__version__ = "0.1.0"
