"""Timekeeper - timer lifecycle and billing accounting for case work"""

__version__ = "0.1.0"
