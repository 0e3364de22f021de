"""Accelerator: composes instruction documents and editor templates into developer repositories."""

__version__ = "0.3.0"
