"""HTTP API for trial persistence."""
