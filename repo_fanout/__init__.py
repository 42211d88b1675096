"""repo-fanout: apply one scripted change across many repositories."""

__version__ = "0.1.0"
