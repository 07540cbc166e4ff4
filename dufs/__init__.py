"""Access control, access logging, configuration and listener helpers for a file server."""

__version__ = "0.43.0"

__all__ = ["__version__"]