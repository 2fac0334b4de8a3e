"""HTTP API for Taskboard Core."""
