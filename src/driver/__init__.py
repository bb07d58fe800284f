"""Bulk load driver layer.

This module runs the driver loop, the bulk load lifecycle around it, and
the SDK client that wires every collaborator together.
"""
