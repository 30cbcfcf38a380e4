"""Automated backup lifecycle manager."""

__version__ = "1.0.0"
