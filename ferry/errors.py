"""Exceptions shared across ferry modules."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Fatal configuration error(s)."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("\n".join(errors))
