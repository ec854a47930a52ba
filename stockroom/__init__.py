"""Inventory transaction engine: catalog, stock movements, ledger and reports."""

__version__ = "0.1.0"
