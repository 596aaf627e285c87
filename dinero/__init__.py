"""Dinero: local-first wallet and transaction sync layer."""

__version__ = "0.1.0"
