"""Reveal party light command relay"""

__version__ = "1.0.0"
