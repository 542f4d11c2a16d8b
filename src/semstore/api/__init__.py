"""Outer surfaces: Click CLI and FastAPI server."""
