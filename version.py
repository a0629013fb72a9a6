"""Version information for Form 34 Results Capture."""

__version__ = "1.0.0"
