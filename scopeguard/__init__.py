"""scopeguard - scope-based access decisions and relationship integrity."""

__version__ = "0.1.0"
