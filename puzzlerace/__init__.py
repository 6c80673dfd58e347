"""Competitive standings client for private puzzle race rooms."""

__version__ = "0.1.0"
