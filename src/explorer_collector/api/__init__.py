"""HTTP API — search resolution and health."""
