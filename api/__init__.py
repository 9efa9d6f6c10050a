"""Recordflow HTTP API (FastAPI)."""
