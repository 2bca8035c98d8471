"""Gasless swap relay service."""

__version__ = "0.1.0"
