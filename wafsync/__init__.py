"""Sync IP allowlist/bypass firewall rules for a Vercel project from a CSV file."""

__version__ = "0.1.0"
