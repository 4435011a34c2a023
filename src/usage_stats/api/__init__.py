"""HTTP API for the usage statistics service."""
