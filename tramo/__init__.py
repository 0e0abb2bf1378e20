"""Tramo - road geometry pipeline for a driving companion."""

__version__ = "1.0.0"
