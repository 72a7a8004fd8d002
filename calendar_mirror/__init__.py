"""Calendar Mirror - keeps a local mirror of a user's Google calendars."""

__version__ = "0.1.0"
