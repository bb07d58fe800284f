"""Shared store layer.

This module owns the DuckDB database that holds ledger and namespace
state for every cooperating instance.
"""
