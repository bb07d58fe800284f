"""Durable execution layer.

This module defines the workflow engine and cluster size contracts the
driver consumes, plus in-process adapters and the do/undo step runner.
"""
