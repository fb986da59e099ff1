"""ZeroDrop server: capability issuance, pairing and share records."""
