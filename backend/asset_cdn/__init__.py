"""Asset CDN: token-gated uploads and a public, cache-friendly file endpoint."""

__version__ = "1.0.0"
