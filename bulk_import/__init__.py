"""Catalog bulk import: tabular import, reconciliation and batched execution."""

__version__ = "0.1.0"
