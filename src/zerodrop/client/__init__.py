"""ZeroDrop client: HTTP API, encrypted transfers and CLI."""
