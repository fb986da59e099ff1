"""HTTP API routes for the ZeroDrop server."""
