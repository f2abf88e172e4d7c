"""Edith Mission Control: shared resources, bookings, spend and quotas for agent teams."""

__version__ = "0.3.0"
