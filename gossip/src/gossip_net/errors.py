from __future__ import annotations


class TransportError(Exception):
    """Raised when joining a topic or broadcasting on it fails."""
