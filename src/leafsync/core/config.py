"""Shared configuration classes and constants for leafsync.

This module defines the connection settings used by both the HTTP client
(OverleafHTTPClient) and the real-time transport (ConnectionManager).
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

DEFAULT_SERVER = "https://www.overleaf.com"

# Per-folder configuration
CONFIG_DIR = ".leafsync"
SETTINGS_FILE = "settings.json"
STATE_FILE = "state.db"
IGNORE_FILE = ".leafignore"

# Echo suppression window (seconds)
DEBOUNCE_DELAY = 0.5

# Round-trip bounds (seconds)
REQUEST_TIMEOUT = 5.0
HANDSHAKE_TIMEOUT = 5.0


@dataclass
class Identity:
    """Authenticated session with the remote service.

    Attributes:
        cookies: Raw Cookie header value (e.g. "overleaf_session2=...").
        csrf_token: CSRF token sent with mutating requests.
    """

    cookies: str
    csrf_token: str = ""

    @property
    def is_valid(self) -> bool:
        """Check whether the identity carries a session cookie."""
        return bool(self.cookies.strip())


@dataclass
class ServerConfig:
    """Configuration for connecting to an Overleaf-compatible server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://www.overleaf.com").
        timeout: HTTP request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str = DEFAULT_SERVER
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def origin(self) -> str:
        """Scheme and host of the server, without any path."""
        parts = urlsplit(self.server_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def ws_origin(self) -> str:
        """Origin rewritten for WebSocket connections (http->ws, https->wss)."""
        url = self.origin
        if url.startswith("https://"):
            return "wss://" + url[8:]
        if url.startswith("http://"):
            return "ws://" + url[7:]
        return url

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS."""
        return self.server_url.startswith("https://")
