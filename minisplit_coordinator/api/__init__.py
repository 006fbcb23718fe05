"""HTTP API for the coordinator."""
