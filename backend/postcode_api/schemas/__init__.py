"""Pydantic schemas for responses and error envelopes."""
