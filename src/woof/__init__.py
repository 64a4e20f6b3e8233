"""Woof: track bugs, changes, releases, help requests and patches from a mailing list."""

__version__ = "0.1.0"
