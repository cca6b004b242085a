# This project was developed with assistance from AI tools.
"""Permisos Digitales API."""

__version__ = "0.1.0"
