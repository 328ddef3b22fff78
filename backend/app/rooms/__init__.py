"""Room management REST API (create, list, join, history, members)."""
