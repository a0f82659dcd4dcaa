"""Operator managing the lifecycle of API server at-rest encryption keys."""

__version__ = "0.1.0"
