"""Sync control layer.

This package drives historical backfill, live subscriptions,
and cursor persistence for the ledger projection.
"""
