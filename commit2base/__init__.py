"""commit2base: mirror commit history from hosting platforms into a relational store."""

__version__ = "0.1.0"
