"""
Core package for shared utilities.

Configuration, logging, failure taxonomy, token validation and the
per-request context used across the pipeline stages and routers.
"""
