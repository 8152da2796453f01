"""Security backend for the studio website: sessions, CSRF, rate limiting, audit log."""

__version__ = "0.1.0"
