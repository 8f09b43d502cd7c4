"""YouTube link manager: links API server and offline-tolerant sync client."""

__version__ = "0.1.0"
