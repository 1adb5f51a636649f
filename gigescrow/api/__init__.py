"""HTTP API for gigescrow (FastAPI)."""
