"""Ledger access layer.

This package reads relief contract logs from the ledger node
and decodes them into typed domain events.
"""
