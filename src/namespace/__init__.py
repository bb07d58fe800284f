"""Namespace layer.

This module keeps the per-collection directory tree, finalized file
metadata, and reference-counted dependencies in the shared store.
"""
