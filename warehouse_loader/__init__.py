"""Warehouse load-and-reconcile engine."""

__version__ = '0.1.0'
