"""Client-side access layer for the Trakt.tv API."""

__version__ = "0.1.0"
