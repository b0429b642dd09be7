"""Chat relay for long-running coding-agent CLIs."""

__version__ = "0.1.0"
