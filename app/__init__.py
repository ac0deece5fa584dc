"""BookVault purchase service (FastAPI)."""
