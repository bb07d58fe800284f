"""Per-file ingest workflow.

This module copies primary data into collection storage and records the
resulting file in the namespace, undoing partial work on failure.
"""
