"""Execution backend configuration and an async Docker client for running tasks."""

__version__ = "0.3.0"