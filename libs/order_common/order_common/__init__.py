"""Shared data model and store clients for the order pipeline."""

__version__ = "0.1.0"
