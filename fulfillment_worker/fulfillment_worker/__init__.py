"""Fulfillment worker: renders, archives and announces processed orders."""

__version__ = "0.1.0"
