"""buildrelay — decides which CI jobs start after a build finishes."""

__version__ = "0.1.0"
