"""Multi-instance GraphSense deployment manager."""

__version__ = "0.1.0"
