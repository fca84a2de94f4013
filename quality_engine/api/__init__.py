"""HTTP API for the quality engine."""
