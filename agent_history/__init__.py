"""Agent History - unified, searchable history of AI coding agent sessions."""

__version__ = "0.1.0"
