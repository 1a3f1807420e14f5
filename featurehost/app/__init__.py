"""featurehost HTTP host (FastAPI)."""
