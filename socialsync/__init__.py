"""OAuth connection and publish-scheduling core for the social dashboard."""

__version__ = "1.0.0"
