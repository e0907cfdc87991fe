"""Multi-session meeting attendance reports from participant exports."""

__version__ = "1.0.0"
