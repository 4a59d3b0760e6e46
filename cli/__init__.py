"""LMS Jobs operator CLI."""

from lms_jobs import __version__

__all__ = ["__version__"]
