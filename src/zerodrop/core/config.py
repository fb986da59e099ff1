"""Shared configuration classes for ZeroDrop.

This module defines configuration classes used by both client and server components.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ServerConfig:
    """Configuration for connecting to a ZeroDrop server.

    Used by the HTTP client and the transfer client to ensure consistent
    connection settings.

    Attributes:
        server_url: Base URL of the server (e.g., "https://drop.example.com").
        token: Bearer token of the acting user (None for anonymous transfers).
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")

    @property
    def headers(self) -> dict[str, str]:
        """Authorization headers for API requests (empty when anonymous)."""
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}
