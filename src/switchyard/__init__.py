"""Multi-backend streaming agent runtime."""

__version__ = "0.1.0"
