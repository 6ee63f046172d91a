"""HTTP API for the exit seller."""
