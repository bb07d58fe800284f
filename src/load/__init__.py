"""Load ledger layer.

This module tracks per-file load status for bulk loads so drivers can
claim, reconcile, and recover work across restarts.
"""
