"""HTTP API for triggering runs."""
