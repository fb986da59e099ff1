"""ZeroDrop - Zero-knowledge encrypted file transfer."""

__version__ = "0.1.0"
