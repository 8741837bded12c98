"""Intake service: records new orders and schedules their fulfillment."""

__version__ = "0.1.0"
