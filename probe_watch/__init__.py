"""Periodic HTTPS endpoint probing with slow/down alerts."""

__version__ = "0.1.0"
