"""Projection layer.

This package applies decoded ledger events to the document store
with idempotent, atomic writes.
"""
