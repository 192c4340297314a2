"""
HTTP API package.

FastAPI application exposing the sync engine's trigger and query surface.
"""
