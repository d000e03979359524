"""Postcode API: HTTP service edge for postal code lookups."""

__version__ = "1.0.0"
