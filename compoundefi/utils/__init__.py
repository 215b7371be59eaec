"""Shared utilities: configuration, exceptions and logging."""
